"""
REST API for the Map Service

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Async, Pydantic validation, streaming responses
2. Flask - Simple, but sync-focused; streaming large files ties up workers
3. aiohttp - Async, but more plumbing for validation

Decision: FastAPI
- Async endpoints match the aiofiles-based transfer paths
- StreamingResponse consumes our async generators directly, so a slow
  client throttles the artifact reader
- Pydantic models for the JSON bodies

Uploads are sent as the raw request body with the filename and optional
fields in the query string; the body is streamed straight into the
inbound path without being buffered.

API Design:
- GET  /map/{map_id}/download
- GET  /map/{map_id}/metadata
- GET  /map/latest-version
- POST /map/upload?filename=...
- POST /map/{map_id}/diff
- GET  /maps
- GET  /health
"""

import time
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..errors import (
    InvalidInput,
    NoValidRecords,
    NotFound,
    PayloadTooLarge,
    TileSyncError,
)
from ..logs import get_logger
from ..maps.metadata import utc_timestamp
from ..service import MapService

logger = get_logger(__name__)


# === Pydantic Models ===

class TileManifest(BaseModel):
    """Client-side tile checksums for an incremental sync."""
    tileChecksums: Optional[Dict[str, str]] = None


class TileUpdateInfo(BaseModel):
    """One tile the client must fetch."""
    z: int
    x: int
    y: int
    checksum: str


class DiffResponse(BaseModel):
    """Result of a tile diff."""
    mapId: str
    count: int
    updates: List[TileUpdateInfo]


def error_status(error: TileSyncError) -> int:
    """HTTP status for an error kind."""
    if isinstance(error, PayloadTooLarge):
        return 413
    if isinstance(error, InvalidInput):
        return 400
    if isinstance(error, (NotFound, NoValidRecords)):
        return 404
    return 500


def to_http(error: TileSyncError) -> HTTPException:
    """Convert a core error into an HTTPException."""
    return HTTPException(
        status_code=error_status(error),
        detail={'error': str(error), 'kind': error.kind},
    )


# === API Creation ===

def create_app(service: MapService) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: MapService instance to expose

    Returns:
        FastAPI application
    """
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("api_server_starting", storage_dir=str(service.storage_dir))
        yield
        logger.info("api_server_stopping")

    app = FastAPI(
        title="Tile Sync API",
        description="Distribution and incremental sync of tiled map artifacts",
        version="1.0.0",
        lifespan=lifespan,
    )

    # === Endpoints ===

    @app.get("/health", tags=["General"])
    async def health():
        """Liveness check."""
        return {
            "status": "healthy",
            "timestamp": utc_timestamp(),
            "uptime": time.monotonic() - started_at,
        }

    @app.get("/maps", tags=["Maps"])
    async def list_maps():
        """List every readable map record."""
        records = await service.list_maps()
        return [r.to_dict() for r in records]

    @app.get("/map/latest-version", tags=["Maps"])
    async def get_latest_version():
        """Metadata of the highest-versioned map."""
        try:
            latest = await service.get_latest_version()
        except TileSyncError as e:
            logger.error("get_latest_version_failed", kind=e.kind, error=str(e))
            raise to_http(e)
        return latest.to_dict()

    @app.get("/map/{map_id}/metadata", tags=["Maps"])
    async def get_map_metadata(map_id: str):
        """Metadata for one map."""
        try:
            record = await service.get_metadata(map_id)
        except TileSyncError as e:
            raise to_http(e)
        return record.to_dict()

    @app.get("/map/{map_id}/download", tags=["Maps"])
    async def download_map(map_id: str):
        """
        Stream a map artifact.

        Missing records or artifacts are reported before the response
        starts. An I/O error after that truncates the response; the
        client has to restart the download.
        """
        try:
            _, stream = await service.open_download(map_id)
        except TileSyncError as e:
            logger.error("map_download_failed", map_id=map_id, kind=e.kind, error=str(e))
            raise to_http(e)

        return StreamingResponse(
            stream.chunks(),
            media_type="application/octet-stream",
            headers={
                "Content-Disposition": f"attachment; filename=map-{map_id}.{service.extension}",
                "Content-Length": str(stream.total_size),
            },
        )

    @app.post("/map/upload", status_code=201, tags=["Maps"])
    async def upload_map(
        request: Request,
        filename: str = Query(..., description="Original filename, e.g. city.mbtiles"),
        name: Optional[str] = Query(None),
        description: Optional[str] = Query(None),
        version: Optional[str] = Query(None),
    ):
        """Upload a new map version as the raw request body."""
        content_length = request.headers.get('content-length')
        declared_length = int(content_length) if content_length and content_length.isdigit() else None

        try:
            record = await service.upload(
                request.stream(),
                filename,
                name=name,
                description=description,
                version=version,
                declared_length=declared_length,
            )
        except TileSyncError as e:
            logger.error("map_upload_failed", filename=filename, kind=e.kind, error=str(e))
            raise to_http(e)

        return {
            "message": "Map uploaded successfully",
            "mapId": record.map_id,
            "metadata": record.to_dict(),
        }

    @app.post("/map/{map_id}/diff", response_model=DiffResponse, tags=["Sync"])
    async def diff_tiles(map_id: str, manifest: TileManifest):
        """Tiles whose checksum differs from the client's copy."""
        try:
            updates = await service.diff_tiles(map_id, manifest.tileChecksums)
        except TileSyncError as e:
            raise to_http(e)

        return DiffResponse(
            mapId=map_id,
            count=len(updates),
            updates=[TileUpdateInfo(**u.to_dict()) for u in updates],
        )

    return app


async def run_api_server(service: MapService, host: str = "0.0.0.0", port: int = 5045):
    """
    Run the API server.

    Args:
        service: MapService instance
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_app(service)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
