"""Database configuration and the file metadata index."""
import re
import shutil
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, create_engine, select

from config import get_settings
from models import FileRecord, Setting, SQLModel
from utils import IMAGE_EXTS, OFFICE_EXTS

INDEX_VERSION = "1.0.0"

DATABASE_URL = get_settings().database_url

# Database engine
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)


@contextmanager
def get_session():
    """Get a database session context manager."""
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Initialize database tables."""
    SQLModel.metadata.create_all(engine)


def get_setting(key: str) -> Optional[str]:
    """Get a setting value by key."""
    with get_session() as s:
        row = s.get(Setting, key)
        return row.value if row else None


def set_setting(key: str, value: str) -> None:
    """Set a setting value."""
    with get_session() as s:
        row = s.get(Setting, key)
        if row:
            row.value = value
        else:
            s.add(Setting(key=key, value=value))
        s.commit()


def touch() -> None:
    set_setting("last_updated", datetime.utcnow().isoformat())


def add_file(**fields) -> FileRecord:
    """Insert a record, or update the one with the same filename and folder."""
    now = datetime.utcnow()
    with get_session() as s:
        record = s.exec(
            select(FileRecord).where(
                FileRecord.filename == fields["filename"],
                FileRecord.folder_path == fields["folder_path"],
            )
        ).first()
        if record:
            for name, value in fields.items():
                setattr(record, name, value)
            record.modified_at = now
        else:
            record = FileRecord(**fields)
        s.add(record)
        s.commit()
        s.refresh(record)
    touch()
    return record


def get_file_by_name(filename: str) -> Optional[FileRecord]:
    with get_session() as s:
        return s.exec(
            select(FileRecord).where(
                or_(FileRecord.filename == filename, FileRecord.original_filename == filename)
            )
        ).first()


def list_files() -> List[FileRecord]:
    with get_session() as s:
        return list(s.exec(select(FileRecord).order_by(FileRecord.id)).all())


def search_files(query: str, file_type: Optional[str] = None) -> List[FileRecord]:
    """Case-insensitive substring search over names and paths.

    ``file_type`` is "image", "office" or a bare extension.
    """
    needle = query.lower()
    stmt = select(FileRecord).where(
        or_(
            func.lower(FileRecord.filename).contains(needle, autoescape=True),
            func.lower(FileRecord.original_filename).contains(needle, autoescape=True),
            func.lower(FileRecord.path).contains(needle, autoescape=True),
        )
    )
    if file_type == "image":
        stmt = stmt.where(FileRecord.extension.in_(IMAGE_EXTS))
    elif file_type == "office":
        stmt = stmt.where(FileRecord.extension.in_(OFFICE_EXTS))
    elif file_type:
        stmt = stmt.where(FileRecord.extension == file_type.lower().lstrip("."))
    with get_session() as s:
        return list(s.exec(stmt.order_by(FileRecord.id)).all())


def delete_file(filename: str) -> bool:
    """Drop every record stored or uploaded under ``filename``."""
    with get_session() as s:
        rows = s.exec(
            select(FileRecord).where(
                or_(FileRecord.filename == filename, FileRecord.original_filename == filename)
            )
        ).all()
        for row in rows:
            s.delete(row)
        s.commit()
    if rows:
        touch()
    return bool(rows)


def get_stats() -> dict:
    files = list_files()
    total_size = sum(f.size for f in files)
    file_types: dict[str, int] = {}
    for f in files:
        file_types[f.extension] = file_types.get(f.extension, 0) + 1
    return {
        "totalFiles": len(files),
        "totalSize": total_size,
        "totalSizeMB": f"{total_size / (1024 * 1024):.2f}",
        "fileTypes": file_types,
        "lastUpdated": get_setting("last_updated"),
        "lastScan": get_setting("last_scan"),
        "version": INDEX_VERSION,
    }


def backup() -> Path:
    """Copy the SQLite index into the backup directory and return the copy's path."""
    source = engine.url.database
    if engine.url.get_backend_name() != "sqlite" or not source or source == ":memory:":
        raise ValueError("Only file-based SQLite databases can be backed up")
    backup_dir = Path(get_settings().backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = re.sub(r"[:.]", "-", datetime.utcnow().isoformat())
    target = backup_dir / f"database-backup-{stamp}.db"
    shutil.copy2(source, target)
    return target
