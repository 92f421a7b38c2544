"""
Image Assets – upload, browse and serve optimized images (FastAPI + Pillow)

Quick start
-----------
1) python -m venv .venv && source .venv/bin/activate  # or .venv\\Scripts\\activate on Windows
2) pip install -e .
3) python app.py  # creates the metadata DB on first run
4) Open http://localhost:3000/assets/image/<filename>?w=300&fm=webp

Notes
-----
• Settings come from ASSETS_* environment variables or a local .env file.
• Source files are looked up in ASSETS_DIRECTORIES, first match wins.
• Rendered variants are cached under ASSETS_CACHE_DIR for ASSETS_CACHE_TTL seconds.
• Unknown filenames render a gray "not found" placeholder instead of a 404.
"""

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import init_db
from routes import (
    app_version,
    database_backup,
    database_files,
    database_rescan,
    database_search,
    database_stats,
    delete_stored_file,
    download_file,
    folder_structure,
    get_image,
    index,
    preview_file,
    search_file_by_name,
    upload_files,
    upload_images,
)
from serving import ImageServingError
from utils import send_error

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def image_error_handler(request: Request, exc: ImageServingError):
    return JSONResponse({"error": str(exc)}, status_code=500)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Oops! The endpoint you are looking for does not exist."
    return send_error(str(message), exc.status_code)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()

    app = FastAPI(title="Image Assets")
    app.add_exception_handler(ImageServingError, image_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_origin_regex=settings.allow_origin_regex,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
    )

    # Routes
    app.get("/")(index)
    app.get("/version")(app_version)

    # Image optimization
    app.get("/assets/image/{filename}")(get_image)
    app.post("/image/upload")(upload_images)

    # Files
    app.post("/file/upload")(upload_files)
    app.get("/file/search")(search_file_by_name)
    app.get("/file/download/{filename}")(download_file)
    app.get("/file/preview/{filename}")(preview_file)
    app.delete("/file/delete/{filename}")(delete_stored_file)

    # Folder browsing
    app.get("/folder")(folder_structure)
    app.get("/folder/{path:path}")(folder_structure)

    # Metadata index
    app.get("/database/files")(database_files)
    app.get("/database/stats")(database_stats)
    app.get("/database/search")(database_search)
    app.post("/database/rescan")(database_rescan)
    app.post("/database/backup")(database_backup)

    logger.info("Serving images from %s", ", ".join(settings.directories))
    return app


app = create_app()


if __name__ == "__main__":
    # Allow `python app.py 8000`
    settings = get_settings()
    port = int(sys.argv[1]) if len(sys.argv) > 1 else settings.port
    print(f"→ Open http://localhost:{port}")
    import uvicorn

    uvicorn.run("app:app", host=settings.host, port=port, reload=True)
