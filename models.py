"""Models for the assets service."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class FitMode(str, Enum):
    """How an image is mapped into a width x height box."""
    cover = "cover"
    contain = "contain"
    fill = "fill"
    inside = "inside"
    outside = "outside"


class TransformRequest(SQLModel):
    """Parameters of one rendered variant of a stored image."""
    source_filename: str
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    format: Optional[str] = None
    quality: Optional[int] = Field(default=None, ge=1, le=100)
    fit: Optional[FitMode] = None


class FileRecord(SQLModel, table=True):
    """Metadata for a file stored under one of the storage directories."""
    __table_args__ = (UniqueConstraint("filename", "folder_path"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    filename: str = Field(index=True)
    original_filename: str = Field(index=True)
    path: str = Field(description="Absolute path")
    relative_path: str
    folder_path: str = Field(index=True)
    size: int = 0
    mtime: float = 0.0
    extension: str = Field(default="", index=True)
    mime_type: str = ""
    width: int = 0
    height: int = 0
    file_hash: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    modified_at: datetime = Field(default_factory=datetime.utcnow)
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)


class Setting(SQLModel, table=True):
    """Service bookkeeping values."""
    key: str = Field(primary_key=True)
    value: str
