from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class ShortenRequest(ApiModel):
    url: str

class ShortenResponse(ApiModel):
    original_url: str = Field(alias="originalUrl")
    short_url: str = Field(alias="shortUrl")
    short_code: str = Field(alias="shortCode")

class BatchItemError(ApiModel):
    error: str
    original_url: str | None = Field(default=None, alias="originalUrl")

class StatsResponse(ApiModel):
    original_url: str = Field(alias="originalUrl")
    short_code: str = Field(alias="shortCode")
    created_at: datetime = Field(alias="createdAt")
    access_count: int = Field(alias="accessCount")

class HealthResponse(ApiModel):
    status: str
    service: str
    base_domain: str = Field(alias="baseDomain")
    timestamp: datetime