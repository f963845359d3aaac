from datetime import datetime
from sqlalchemy import String, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from shortener.db import Base

# Column width for original_url. Settings.max_url_length must not exceed
# it: SQLite ignores the width, other databases reject longer values.
MAX_URL_LENGTH = 2048

class UrlMapping(Base):
    __tablename__ = "urls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    original_url: Mapped[str] = mapped_column(String(MAX_URL_LENGTH), nullable=False, unique=True)
    short_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"UrlMapping(short_code={self.short_code!r}, original_url={self.original_url!r})"
