"""On-disk cache for rendered image variants."""
import json
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from models import TransformRequest

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60  # 1 hour
META_SUFFIX = ".meta.json"


def build_cache_key(request: TransformRequest) -> str:
    """Key identifying one rendered variant; absent fields keep an empty slot."""
    def slot(value) -> str:
        if value is None:
            return ""
        return getattr(value, "value", value)

    return "{name}-w{w}-h{h}-fm{fm}-q{q}-fit{fit}".format(
        name=request.source_filename,
        w=slot(request.width),
        h=slot(request.height),
        fm=slot(request.format),
        q=slot(request.quality),
        fit=slot(request.fit),
    )


class DiskCacheStore:
    """Payload file plus JSON sidecar per key, expired lazily on read.

    Layout: ``{key}{extension}`` holds the encoded bytes and
    ``{key}.meta.json`` holds ``{"timestamp", "ttl", "extension"}`` with the
    timestamp in epoch milliseconds. Only this class writes ``cache_dir``.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self._clock = clock

    def _path(self, key: str, suffix: str = "") -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.cache_dir / f"{key}{suffix}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str, extension: Optional[str] = None) -> Optional[bytes]:
        """Cached payload, or None on a miss, an expired entry or any I/O error."""
        try:
            meta_path = self._path(key, META_SUFFIX)
            if not meta_path.exists():
                return None
            meta = json.loads(meta_path.read_text())
            age = (self._now_ms() - meta["timestamp"]) / 1000
            if age > meta["ttl"]:
                logger.debug("[image_cache] expired %s (age %.1fs)", key, age)
                self.delete(key, meta.get("extension"))
                return None
            payload_path = self._path(key, extension or meta.get("extension", ""))
            if not payload_path.exists():
                return None
            return payload_path.read_bytes()
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("[image_cache] read failed for %s: %s", key, exc)
            return None

    def put(self, key: str, payload: bytes, extension: str) -> bool:
        """Store payload and sidecar; False when anything could not be written."""
        try:
            payload_path = self._path(key, extension)
            meta_path = self._path(key, META_SUFFIX)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            meta = {"timestamp": self._now_ms(), "ttl": self.ttl, "extension": extension}
            self._write_atomic(payload_path, payload)
            self._write_atomic(meta_path, json.dumps(meta).encode("utf-8"))
            return True
        except (OSError, ValueError) as exc:
            logger.warning("[image_cache] write failed for %s: %s", key, exc)
            return False

    def delete(self, key: str, extension: Optional[str] = None) -> None:
        """Remove payload and sidecar. Missing files are ignored."""
        try:
            meta_path = self._path(key, META_SUFFIX)
            if extension is None and meta_path.exists():
                extension = json.loads(meta_path.read_text()).get("extension")
            if extension:
                self._path(key, extension).unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning("[image_cache] delete failed for %s: %s", key, exc)

    def clear(self) -> int:
        """Remove every cached file. Returns the number of files removed."""
        removed = 0
        if not self.cache_dir.exists():
            return removed
        for p in self.cache_dir.iterdir():
            if not p.is_file():
                continue
            try:
                p.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("[image_cache] could not remove %s: %s", p, exc)
        return removed

    def purge(self, source_filename: str) -> int:
        """Remove every variant rendered from ``source_filename``. Returns entries removed."""
        if not self.cache_dir.exists():
            return 0
        pattern = re.compile(re.escape(source_filename) + r"-w\d*-h\d*-fm[a-z]*-q\d*-fit[a-z]*")
        removed = 0
        for meta_path in self.cache_dir.glob(f"*{META_SUFFIX}"):
            key = meta_path.name[: -len(META_SUFFIX)]
            if pattern.fullmatch(key):
                self.delete(key)
                removed += 1
        return removed
