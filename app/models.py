from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Document(SQLModel, table=True):
    __tablename__ = "documents"

    path: str = Field(primary_key=True)
    collection: str = Field(index=True)  # parent collection path, used for listing
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: int = Field(default=1)  # bumped on every write, guards concurrent updates
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DownloadRecord(SQLModel):
    book_id: str
    downloaded_at: Optional[datetime] = None


class DownloadCount(SQLModel):
    user_id: str
    downloads: int


class DownloadAudit(SQLModel):
    user_id: str
    counter: int
    ledger_entries: int
    consistent: bool
