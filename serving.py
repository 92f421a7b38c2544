"""Cache-first image serving."""
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from image_cache import DiskCacheStore, build_cache_key
from models import TransformRequest
from transform import (
    RenderedImage,
    TransformError,
    content_type_for,
    normalize_format,
    render,
)

logger = logging.getLogger(__name__)


class ImageServingError(Exception):
    """A variant could not be produced; the message is safe to show to clients."""


def find_source_file(filename: str, directories: Iterable[Path]) -> Optional[Path]:
    """First regular file named ``filename`` directly inside one of ``directories``."""
    if not filename or filename in (".", "..") or Path(filename).name != filename:
        return None
    for directory in directories:
        candidate = Path(directory) / filename
        try:
            if candidate.is_file():
                return candidate
        except OSError:
            # e.g. name longer than the filesystem allows
            continue
    return None


class ImageServer:
    """Derive key, consult the cache, render on a miss and store the result."""

    def __init__(
        self,
        cache: DiskCacheStore,
        directories: Sequence[Path],
        *,
        default_format: str = "png",
        default_quality: int = 60,
        placeholder_size: int = 300,
        on_cache_write: Optional[Callable[[str], None]] = None,
    ):
        self.cache = cache
        self.directories = list(directories)
        self.default_format = default_format
        self.default_quality = default_quality
        self.placeholder_size = placeholder_size
        self.on_cache_write = on_cache_write

    def serve(self, request: TransformRequest) -> RenderedImage:
        try:
            fmt = normalize_format(request.format, self.default_format)
        except TransformError as exc:
            raise ImageServingError(str(exc)) from exc
        extension = f".{fmt}"

        key = build_cache_key(request)
        cached = self.cache.get(key, extension)
        if cached is not None:
            return RenderedImage(cached, content_type_for(fmt), extension)

        try:
            source = self._read_source(request.source_filename)
            rendered = render(
                source,
                request,
                default_format=self.default_format,
                default_quality=self.default_quality,
                placeholder_size=self.placeholder_size,
            )
        except Exception as exc:
            logger.exception("[serving] failed to render %s", request.source_filename)
            raise ImageServingError(str(exc) or exc.__class__.__name__) from exc

        if self.cache.put(key, rendered.payload, rendered.extension):
            self._notify(key)
        return rendered

    def _read_source(self, filename: str) -> Optional[bytes]:
        path = find_source_file(filename, self.directories)
        if path is None:
            logger.info("[serving] %s not found, using placeholder", filename)
            return None
        try:
            return path.read_bytes()
        except FileNotFoundError:
            # removed between lookup and read
            return None

    def _notify(self, key: str) -> None:
        if self.on_cache_write is None:
            return
        try:
            self.on_cache_write(key)
        except Exception as exc:
            logger.warning("[serving] cache write hook failed for %s: %s", key, exc)
