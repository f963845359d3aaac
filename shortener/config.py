import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./db/urls.db")
    # Empty disables the Redis cache and click buffer.
    redis_url: str = os.getenv("REDIS_URL", "")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3444"))
    base_domain: str = os.getenv("BASE_DOMAIN", "http://localhost:3444")
    code_length: int = int(os.getenv("CODE_LENGTH", "6"))
    max_batch_size: int = int(os.getenv("MAX_BATCH_SIZE", "50"))
    max_allocation_attempts: int = int(os.getenv("MAX_ALLOCATION_ATTEMPTS", "10"))
    # Bounded by the urls.original_url column width (models.MAX_URL_LENGTH)
    max_url_length: int = int(os.getenv("MAX_URL_LENGTH", "2048"))
    cache_ttl_seconds: int = int(os.getenv("CACHE_TTL_SECONDS", "86400"))
    flush_interval_seconds: int = int(os.getenv("FLUSH_INTERVAL_SECONDS", "10"))
    db_connect_attempts: int = int(os.getenv("DB_CONNECT_ATTEMPTS", "30"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
