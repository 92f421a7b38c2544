"""Resize and re-encode images with Pillow."""
from io import BytesIO
from typing import NamedTuple, Optional

from PIL import Image as PILImage, ImageOps, UnidentifiedImageError

from models import FitMode, TransformRequest
from placeholder import not_found_image

# Output token -> Pillow encoder
FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "gif": "GIF",
    "tiff": "TIFF",
}
LOSSY = {"JPEG", "WEBP"}
RESAMPLE = PILImage.Resampling.LANCZOS


class TransformError(Exception):
    """Raised when an image cannot be rendered."""


class ImageDecodeError(TransformError):
    """Source bytes are empty, truncated or not an image."""


class UnsupportedFormatError(TransformError):
    """Requested output format is not one of FORMATS."""


class RenderedImage(NamedTuple):
    payload: bytes
    content_type: str
    extension: str


def normalize_format(token: Optional[str], default: str = "png") -> str:
    fmt = (token or default).strip().lower()
    if fmt not in FORMATS:
        raise UnsupportedFormatError(f"Unsupported image format: {token}")
    return fmt


def content_type_for(fmt: str) -> str:
    """MIME type for an output token; "jpg" is served as image/jpeg."""
    return f"image/{'jpeg' if fmt == 'jpg' else fmt}"


def decode(data: bytes) -> PILImage.Image:
    """Fully decode source bytes, honouring EXIF orientation."""
    if not data:
        raise ImageDecodeError("Source image is empty")
    try:
        im = PILImage.open(BytesIO(data))
        im.load()
        im = ImageOps.exif_transpose(im)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(f"Cannot decode source image: {exc}") from exc

    has_alpha = im.mode in ("RGBA", "LA", "PA") or "transparency" in im.info
    target = "RGBA" if has_alpha else "RGB"
    return im if im.mode == target else im.convert(target)


def _scaled(size: tuple[int, int], scale: float) -> tuple[int, int]:
    return max(1, round(size[0] * scale)), max(1, round(size[1] * scale))


def resize(
    im: PILImage.Image,
    width: Optional[int],
    height: Optional[int],
    fit: Optional[FitMode] = None,
) -> PILImage.Image:
    """Map ``im`` into width x height. A missing dimension keeps the aspect ratio."""
    if not width and not height:
        return im
    fit = FitMode(fit or FitMode.cover)
    src_w, src_h = im.size

    if not width or not height:
        scale = width / src_w if width else height / src_h
        return im.resize(_scaled(im.size, scale), RESAMPLE)

    if fit is FitMode.cover:
        return ImageOps.fit(im, (width, height), method=RESAMPLE)
    if fit is FitMode.contain:
        black = (0, 0, 0, 255) if im.mode == "RGBA" else (0, 0, 0)
        return ImageOps.pad(im, (width, height), method=RESAMPLE, color=black)
    if fit is FitMode.fill:
        return im.resize((width, height), RESAMPLE)
    if fit is FitMode.inside:
        scale = min(width / src_w, height / src_h)
    else:
        scale = max(width / src_w, height / src_h)
    return im.resize(_scaled(im.size, scale), RESAMPLE)


def encode(im: PILImage.Image, fmt: str, quality: Optional[int] = None) -> bytes:
    """Encode to ``fmt``; quality only reaches the lossy encoders."""
    pil_format = FORMATS[fmt]
    params = {}
    if pil_format == "JPEG":
        im = im.convert("RGB")
    if pil_format in LOSSY and quality is not None:
        params["quality"] = quality

    buf = BytesIO()
    try:
        im.save(buf, format=pil_format, **params)
    except (OSError, ValueError, KeyError) as exc:
        raise TransformError(f"Cannot encode image as {fmt}: {exc}") from exc
    return buf.getvalue()


def render(
    source: Optional[bytes],
    request: TransformRequest,
    *,
    default_format: str = "png",
    default_quality: int = 60,
    placeholder_size: int = 300,
) -> RenderedImage:
    """Produce the encoded variant described by ``request``.

    ``source=None`` means the file could not be located; a placeholder of the
    requested size stands in for it. Undecodable bytes raise ImageDecodeError.
    Without an explicit format the canonical ``default_format`` is produced and
    no quality setting is applied.
    """
    fmt = normalize_format(request.format, default_format)

    if source is None:
        width = request.width or placeholder_size
        im = not_found_image(width, request.height or width)
    else:
        im = decode(source)

    im = resize(im, request.width, request.height, request.fit)

    if request.format:
        payload = encode(im, fmt, request.quality or default_quality)
    else:
        payload = encode(im, fmt)
    return RenderedImage(payload, content_type_for(fmt), f".{fmt}")
