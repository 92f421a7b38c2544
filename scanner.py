"""Index files on disk into the metadata table."""
import hashlib
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from PIL import Image as PILImage, ImageOps
from sqlmodel import select

from database import get_session, set_setting, touch
from models import FileRecord
from utils import IMAGE_EXTS, UPLOAD_MIME_TYPES

EXCLUDED_FOLDERS = {".cache-local", ".git", ".DS_Store", "__pycache__", "node_modules"}


def iter_files(root: Path) -> Iterable[Path]:
    """Iterate through indexable files under root, skipping caches and system folders."""
    for p in root.rglob("*"):
        if not p.is_file() or p.name.startswith("."):
            continue
        if any(part in EXCLUDED_FOLDERS for part in p.relative_to(root).parts):
            continue
        mime, _ = mimetypes.guess_type(p.name)
        if mime in UPLOAD_MIME_TYPES:
            yield p


def md5sum(path: Path, chunk: int = 256 * 1024) -> str:
    """Calculate MD5 hash of a file."""
    h = hashlib.md5()
    with path.open("rb") as f:
        while True:
            b = f.read(chunk)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


def read_image_meta(path: Path) -> tuple[int, int]:
    """Read image dimensions."""
    with PILImage.open(path) as im:
        im = ImageOps.exif_transpose(im)
        return im.width, im.height


def _relative(path: Path, base_dir: Path) -> str:
    try:
        return path.resolve().relative_to(base_dir.resolve()).as_posix()
    except ValueError:
        return path.resolve().as_posix()


def describe_file(
    path: Path, base_dir: Path, original_filename: Optional[str] = None
) -> dict:
    """Column values for a FileRecord describing ``path``."""
    stat = path.stat()
    extension = path.suffix.lower().lstrip(".")
    mime, _ = mimetypes.guess_type(path.name)
    width = height = 0
    if extension in IMAGE_EXTS and extension != "svg":
        try:
            width, height = read_image_meta(path)
        except Exception:
            width = height = 0
    relative = _relative(path, base_dir)
    folder = _relative(path.parent, base_dir)
    return {
        "filename": path.name,
        "original_filename": original_filename or path.name,
        "path": str(path.resolve()),
        "relative_path": relative,
        "folder_path": "" if folder == "." else folder,
        "size": stat.st_size,
        "mtime": stat.st_mtime,
        "extension": extension,
        "mime_type": mime or "application/octet-stream",
        "width": width,
        "height": height,
        "file_hash": md5sum(path),
    }


def index_directories(
    directories: Iterable[Path], base_dir: Path, cleanup: bool = False
) -> dict:
    """Index every file under the given directories. Returns scan stats."""
    added = updated = unchanged = removed = 0
    seen_paths: set[str] = set()

    with get_session() as s:
        for directory in directories:
            directory = Path(directory)
            if not directory.is_dir():
                continue
            for file in iter_files(directory):
                apath = str(file.resolve())
                if apath in seen_paths:
                    continue
                seen_paths.add(apath)
                stat = file.stat()
                record: FileRecord | None = s.exec(
                    select(FileRecord).where(FileRecord.path == apath)
                ).first()
                if not record:
                    s.add(FileRecord(**describe_file(file, base_dir)))
                    added += 1
                # only recompute metadata when size/mtime changed (why: speed)
                elif record.size != stat.st_size or record.mtime != stat.st_mtime:
                    for name, value in describe_file(
                        file, base_dir, record.original_filename
                    ).items():
                        setattr(record, name, value)
                    record.modified_at = datetime.utcnow()
                    s.add(record)
                    updated += 1
                else:
                    unchanged += 1
        if cleanup:
            for record in s.exec(select(FileRecord)).all():
                if record.path not in seen_paths:
                    s.delete(record)
                    removed += 1
        s.commit()

    set_setting("last_scan", datetime.utcnow().isoformat())
    if added or updated or removed:
        touch()
    return {"added": added, "updated": updated, "unchanged": unchanged, "removed": removed}

