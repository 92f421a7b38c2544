"""Utility functions."""
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

APP_MIME_TYPES = [
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
]
IMAGE_MIME_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/tiff",
    "image/bmp",
    "image/svg+xml",
]
# Accepted for pass-through storage only, never transformed.
AUDIO_MIME_TYPES = ["audio/m4a", "audio/mp4", "audio/wav", "audio/x-wav"]
VIDEO_MIME_TYPES = [
    "video/mp4",
    "video/mpeg",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-ms-wmv",
]
UPLOAD_MIME_TYPES = APP_MIME_TYPES + IMAGE_MIME_TYPES + AUDIO_MIME_TYPES + VIDEO_MIME_TYPES
# Allow-list for /image/upload.
UPLOAD_IMAGE_MIME_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]

IMAGE_EXTS = {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "tif", "tiff"}
OFFICE_EXTS = {"doc", "docx", "xls", "xlsx", "ppt", "pptx", "pdf"}


def resolve_under_root(root: Path, candidate: Path) -> Path:
    """Resolve a path ensuring it's under the root directory."""
    root = root.resolve()
    real = candidate.resolve()
    if root not in real.parents and real != root:
        raise HTTPException(status_code=400, detail="Path is outside root")
    return real


def send_success(result: Any, message: str = "Success", status: int = 200) -> JSONResponse:
    return JSONResponse({"status": status, "message": message, "result": result}, status_code=status)


def send_error(message: str, status: int = 500, error: Any = None) -> JSONResponse:
    body = {"status": status, "message": message}
    if error is not None:
        body["error"] = error
    return JSONResponse(body, status_code=status)


def run_reload_command(command: Optional[str]) -> None:
    """Start ``command`` in the background; failures to launch are only logged."""
    if not command:
        return
    try:
        subprocess.Popen(
            shlex.split(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (OSError, ValueError) as exc:
        logger.warning("[reload] could not run %r: %s", command, exc)
