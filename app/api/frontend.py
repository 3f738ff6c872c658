"""
Serving of the built single-page client in production.

Any GET that no API route handled returns the matching file from the bundle
directory, falling back to index.html so client-side routes resolve.
"""
import logging
from pathlib import Path
from fastapi import FastAPI, HTTPException, status
from fastapi.responses import FileResponse

logger = logging.getLogger(__name__)

API_PREFIXES = ("api/", "socket.io/", "metrics")


def mount_frontend(app: FastAPI, static_dir: str) -> None:
    """
    Register the SPA catch-all route. Must be called after every API router
    is included, since routes match in registration order.
    """
    root = Path(static_dir).resolve()
    index_file = root / "index.html"
    if not index_file.is_file():
        logger.warning(f"Frontend bundle not found at {root}; static serving disabled")
        return

    @app.get("/{full_path:path}", include_in_schema=False)
    async def serve_frontend(full_path: str):
        if full_path.startswith(API_PREFIXES):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)
        return FileResponse(index_file)

    logger.info(f"Serving frontend bundle from {root}")
