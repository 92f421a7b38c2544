"""FastAPI routes for the assets service."""
import base64
import binascii
import re
import shutil
import time
import uuid
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, Response

from config import get_settings
from database import (
    add_file,
    backup,
    delete_file,
    get_file_by_name,
    get_stats,
    list_files,
    search_files,
)
from image_cache import DiskCacheStore
from models import FitMode, TransformRequest
from scanner import describe_file, index_directories, iter_files
from serving import ImageServer, find_source_file
from utils import (
    IMAGE_EXTS,
    OFFICE_EXTS,
    UPLOAD_IMAGE_MIME_TYPES,
    UPLOAD_MIME_TYPES,
    resolve_under_root,
    run_reload_command,
    send_success,
)

PACKAGE_NAME = "image-assets"


@lru_cache
def get_image_server() -> ImageServer:
    """Image server built from the application settings."""
    settings = get_settings()
    return ImageServer(
        DiskCacheStore(settings.cache_dir, ttl=settings.cache_ttl),
        settings.source_directories(),
        default_format=settings.default_format,
        default_quality=settings.default_quality,
        placeholder_size=settings.placeholder_size,
    )


def index(request: Request):
    return send_success(dict(request.query_params), "Welcome to Assets Service")


def app_version():
    try:
        current = version(PACKAGE_NAME)
    except PackageNotFoundError:
        current = "1.0.0"
    return send_success({"name": PACKAGE_NAME, "version": current}, "Version retrieved successfully")


def get_image(
    filename: str,
    fm: Optional[str] = Query(None, description="Output format, e.g. jpg, png, webp"),
    q: Optional[int] = Query(None, ge=1, le=100, description="Quality for lossy formats"),
    w: Optional[int] = Query(None, ge=1, description="Width in px"),
    h: Optional[int] = Query(None, ge=1, description="Height in px"),
    fit: Optional[FitMode] = Query(None, description="Fit mode"),
    server: ImageServer = Depends(get_image_server),
):
    """Serve an optimized variant of a stored image."""
    request = TransformRequest(
        source_filename=filename,
        width=w,
        height=h,
        format=fm.strip().lower() if fm else None,
        quality=q,
        fit=fit,
    )
    rendered = server.serve(request)
    return Response(content=rendered.payload, media_type=rendered.content_type)


# Uploads

def _target_dir(subdir: str) -> Path:
    """Directory under the base directory chosen by a request header."""
    base = get_settings().base_directory
    target = resolve_under_root(base, base / subdir.strip("/\\"))
    target.mkdir(parents=True, exist_ok=True)
    return target


def _stored_name(original: str) -> str:
    original = Path(original or "upload").name
    if get_settings().upload_original_name:
        return f"{int(time.time() * 1000)}-" + re.sub(r"\s+", "_", original)
    return uuid.uuid4().hex + Path(original).suffix.lower()


def _check_types(files: List[UploadFile], allowed: List[str], message: str) -> None:
    settings = get_settings()
    if not files:
        raise HTTPException(400, "No files uploaded.")
    if len(files) > settings.max_files_upload:
        raise HTTPException(400, f"Too many files, at most {settings.max_files_upload} allowed.")
    for f in files:
        if f.content_type not in allowed:
            raise HTTPException(400, message)


def _record(dest: Path, original: str) -> dict:
    base = get_settings().base_directory
    return add_file(**describe_file(dest, base, original)).model_dump(mode="json")


def _save_upload(upload: UploadFile, target: Path) -> dict:
    settings = get_settings()
    dest = target / _stored_name(upload.filename)
    with dest.open("wb") as out:
        shutil.copyfileobj(upload.file, out)
    if dest.stat().st_size > settings.max_upload_size:
        dest.unlink(missing_ok=True)
        raise HTTPException(400, f"File too large: {upload.filename}")
    return _record(dest, upload.filename)


def _save_base64(item: dict, target: Path) -> dict:
    settings = get_settings()
    data, filename, mimetype = item.get("base64"), item.get("filename"), item.get("mimetype")
    if not data or not filename or not mimetype:
        raise HTTPException(400, "base64, filename and mimetype are required.")
    if mimetype not in UPLOAD_MIME_TYPES:
        raise HTTPException(400, f"Invalid file type: {mimetype}")
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(400, f"Invalid base64 content for {filename}")
    if len(content) > settings.max_upload_size:
        raise HTTPException(400, f"File too large: {filename}")
    dest = target / _stored_name(filename)
    dest.write_bytes(content)
    return _record(dest, filename)


def upload_images(
    images: List[UploadFile] = File(...),
    dir: str = Header("assets"),
):
    """Store uploaded images under the base directory."""
    _check_types(images, UPLOAD_IMAGE_MIME_TYPES, "Invalid file type. Only JPEG, PNG, GIF and WebP allowed.")
    target = _target_dir(dir)
    result = [_save_upload(f, target) for f in images]
    run_reload_command(get_settings().reload_command)
    return send_success(result, "Images uploaded successfully")


async def upload_files(request: Request, storage: str = Header("")):
    """Multipart ``files`` upload, or JSON with one base64 file or a ``files`` list."""
    target = await run_in_threadpool(_target_dir, storage or "")

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(400, "Invalid JSON body.")
        if not isinstance(body, dict):
            raise HTTPException(400, "Invalid JSON body.")
        items = body["files"] if isinstance(body.get("files"), list) else [body]
        if len(items) > get_settings().max_files_upload:
            raise HTTPException(400, "Too many files.")
        result = []
        for item in items:
            if not isinstance(item, dict):
                raise HTTPException(400, "Invalid file entry.")
            result.append(await run_in_threadpool(_save_base64, item, target))
    else:
        form = await request.form()
        files = [f for f in form.getlist("files") if not isinstance(f, str)]
        _check_types(files, UPLOAD_MIME_TYPES, "Invalid file type.")
        result = [await run_in_threadpool(_save_upload, f, target) for f in files]

    run_reload_command(get_settings().reload_command)
    return send_success(result, "Files uploaded successfully")


# Files on disk

def _type_matches(name: str, file_type: Optional[str]) -> bool:
    ext = Path(name).suffix.lower().lstrip(".")
    if not file_type:
        return True
    if file_type == "image":
        return ext in IMAGE_EXTS
    if file_type == "office":
        return ext in OFFICE_EXTS
    return ext == file_type.lower().lstrip(".")


def search_file_by_name(q: str = Query(..., min_length=1), type: Optional[str] = None):
    """Search the storage directories by file name."""
    needle = q.lower()
    seen: set[Path] = set()
    result = []
    for directory in get_settings().source_directories():
        if not directory.is_dir():
            continue
        for p in iter_files(directory):
            real = p.resolve()
            if real in seen or needle not in p.name.lower() or not _type_matches(p.name, type):
                continue
            seen.add(real)
            result.append(
                {
                    "filename": p.name,
                    "path": p.as_posix(),
                    "size": p.stat().st_size,
                    "extension": p.suffix.lower().lstrip("."),
                }
            )
    return send_success(result, "Files retrieved successfully")


def _require_file(filename: str) -> Path:
    path = find_source_file(filename, get_settings().source_directories())
    if path is None:
        raise HTTPException(404, "File not found.")
    return path


def download_file(filename: str):
    path = _require_file(filename)
    record = get_file_by_name(path.name)
    name = record.original_filename if record and record.original_filename else path.name
    return FileResponse(path, filename=name)


def preview_file(filename: str):
    return FileResponse(_require_file(filename))


def delete_stored_file(filename: str):
    path = find_source_file(filename, get_settings().source_directories())
    if path is not None:
        path.unlink()
    removed = delete_file(filename)
    if path is None and not removed:
        raise HTTPException(404, "File not found.")
    get_image_server().cache.purge(filename)
    return send_success({"filename": filename}, "File deleted successfully")


def _tree(directory: Path) -> list:
    entries = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            entries.append({"name": entry.name, "type": "folder", "children": _tree(entry)})
        else:
            entries.append({"name": entry.name, "type": "file"})
    return entries


def folder_structure(path: str = ""):
    """Nested listing of a directory under the base directory."""
    base = get_settings().base_directory
    target = resolve_under_root(base, base / path)
    if not target.is_dir():
        raise HTTPException(404, f"Directory '{(base / path).as_posix()}' does not exist.")
    return send_success(_tree(target), "Folder structure retrieved successfully.")


# Metadata index

def database_files():
    rows = [r.model_dump(mode="json") for r in list_files()]
    return send_success(rows, "Files retrieved from database")


def database_stats():
    return send_success(get_stats(), "Database statistics retrieved")


def database_search(q: Optional[str] = None, type: Optional[str] = None):
    if not q:
        raise HTTPException(400, "Query parameter required")
    rows = [r.model_dump(mode="json") for r in search_files(q, type)]
    return send_success(rows, "Search results retrieved")


def database_rescan(cleanup: bool = False):
    """Re-index the storage directories."""
    settings = get_settings()
    stats = index_directories(settings.source_directories(), settings.base_directory, cleanup=cleanup)
    if cleanup:
        stats["cacheCleared"] = get_image_server().cache.clear()
    return send_success(stats, "Scan completed")


def database_backup():
    """Snapshot the metadata index into the backup directory."""
    try:
        path = backup()
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return send_success({"backupPath": str(path)}, "Database backed up successfully")
