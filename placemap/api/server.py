"""
placemap: Canvas History API Server
===================================

Read-only HTTP surface over the canvas index.

Endpoints:
- GET /status                          -> "OK" once the index is ready
- GET /tiles/{x}_{y}_z{z}_{w}x{h}.png  -> map tile
- GET /render/timelapse.{gif|apng}     -> timelapse animation
- GET /details?x=&y=                   -> event history of one pixel

Every view is a derived promise of the index promise, so expensive buffers
are built once and then shared by all requests.

Usage:
    uvicorn placemap.api.server:create_app --factory
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from functools import partial
from typing import Dict, List, Optional
import asyncio
import logging
import re

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from ..config import ServerConfig
from ..contracts.base import PromiseTimeout
from ..dataset.index import CanvasIndex
from ..ingestion.sources import format_timestamp
from ..render.tiles import TileWindow, compute_tile_snapshot, encode_png, validate_tile_params
from ..render.timelapse import AnimationKind, encode_animation, render_frames
from ..sync.promise import Promise, derive
from .loader import DatasetLoader

logger = logging.getLogger(__name__)

TILE_NAME = re.compile(r"^(-?\d+)_(-?\d+)_z(\d+)_(\d+)x(\d+)\.png$")


class PixelEventDTO(BaseModel):
    """One entry of a /details response."""
    Timestamp: str
    X: int
    Y: int
    UserID: str
    Color: str


# =============================================================================
# COMPLETION GRAPH WIRING
# =============================================================================

def wire_views(app: FastAPI, dataset: Promise[CanvasIndex], config: ServerConfig) -> None:
    """Derive every served view from the dataset promise."""
    frames = derive(
        dataset,
        partial(render_frames, bucket_millis=config.bucket_millis, trailer_frames=config.trailer_frames),
        name="timelapse-frames",
    )
    app.state.dataset = dataset
    app.state.tiles = derive(dataset, compute_tile_snapshot, name="tile-snapshot")
    app.state.frames = frames
    app.state.animations = {
        kind: derive(
            frames,
            partial(encode_animation, kind=kind, frame_delay_ms=config.frame_delay_ms),
            name=f"timelapse-{kind.value}",
            lazy=True,
        )
        for kind in AnimationKind
    }


async def _wait(
    promise: Promise,
    timeout: Optional[float],
    failure_status: int = 503,
    root: Optional[Promise] = None
):
    """
    Wait for a view, mapping a timeout or failure to an HTTP error.

    A view that failed only because ``root`` (the dataset) failed is
    reported as unavailable (503) rather than as ``failure_status``.
    """
    try:
        return await promise.wait(timeout)
    except PromiseTimeout:
        raise HTTPException(status_code=503, detail="not ready") from None
    except Exception as e:
        status = 503 if root is not None and root.failed else failure_status
        raise HTTPException(status_code=status, detail=f"{promise.name} unavailable: {e}") from e


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    config: Optional[ServerConfig] = None,
    dataset: Optional[Promise[CanvasIndex]] = None,
    loader: Optional[DatasetLoader] = None
) -> FastAPI:
    """
    Build the server.

    Without an explicit ``dataset`` promise the lifespan starts loading the
    configured year through ``loader`` (a DatasetLoader by default).
    """
    config = config or ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        background: List[asyncio.Task] = []
        dataset_loader = None
        promise = dataset
        if promise is None:
            promise = Promise("dataset")
            dataset_loader = loader or DatasetLoader(config)

            async def load() -> CanvasIndex:
                try:
                    return await dataset_loader.load()
                except Exception as e:
                    logger.error("Failed to initialize dataset: %s", e)
                    raise

            background.append(asyncio.create_task(promise.fulfill(load()), name="dataset-load"))

        logger.info("Welcome to the r/place %d map explorer!", config.year)
        wire_views(app, promise, config)
        yield

        logger.info("Shutting down background work")
        background.extend(
            p.task for p in (app.state.tiles, app.state.frames, *app.state.animations.values())
            if p.task is not None
        )
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        if dataset_loader is not None:
            # In-flight cache writes run to completion
            await asyncio.gather(*dataset_loader.cache_writes, return_exceptions=True)

    app = FastAPI(
        title="placemap",
        version="0.1.0",
        description="Tiles, timelapses and pixel history of a collaborative canvas",
        lifespan=lifespan
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],  # read-only
        allow_headers=["*"],
    )

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/status", response_class=PlainTextResponse)
    async def status(request: Request):
        """200 once the index is ready; 503 after a short wait otherwise."""
        await _wait(request.app.state.dataset, config.status_timeout)
        return "OK"

    @app.get("/tiles/{name}")
    async def tile(name: str, request: Request):
        m = TILE_NAME.match(name)
        if m is None:
            raise HTTPException(status_code=404, detail="not found")
        try:
            x, y, z, w, h = (int(g) for g in m.groups())
            validate_tile_params(z, w, h, x, y)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from None

        snapshot = await _wait(
            request.app.state.tiles, config.request_timeout,
            failure_status=500, root=request.app.state.dataset,
        )
        logger.debug("Serving tile %s", name)

        window = TileWindow(snapshot, x, y, w, h, z)
        try:
            png = await asyncio.to_thread(encode_png, window)
        except Exception as e:
            logger.error("Failed to encode tile %s: %s", name, e)
            raise HTTPException(status_code=500, detail=str(e)) from e
        return Response(content=png, media_type="image/png")

    @app.get("/render/timelapse.{kind}")
    async def timelapse(kind: str, request: Request):
        try:
            animation_kind = AnimationKind(kind)
        except ValueError:
            raise HTTPException(status_code=404, detail="not found") from None

        animations: Dict[AnimationKind, Promise[bytes]] = request.app.state.animations
        data = await _wait(
            animations[animation_kind], config.request_timeout,
            failure_status=500, root=request.app.state.dataset,
        )
        logger.info("Writing %.2fMiB %s animation", len(data) / (1 << 20), animation_kind.name)
        return Response(content=data, media_type=animation_kind.content_type)

    @app.get("/details", response_model=List[PixelEventDTO])
    async def details(request: Request, x: Optional[str] = None, y: Optional[str] = None):
        """Event history of pixel (x, y), oldest first."""
        try:
            px, py = int(x), int(y)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail=f"bad coordinate x={x!r} y={y!r}") from None

        index: CanvasIndex = await _wait(request.app.state.dataset, config.request_timeout)
        if not index.in_bounds(px, py):
            raise HTTPException(status_code=404, detail=f"({px}, {py}) is off the canvas")

        return [
            PixelEventDTO(
                Timestamp=format_timestamp(index.time_after(ev.delta_millis)),
                X=px,
                Y=py,
                UserID=index.user_ids[ev.user_index],
                Color=index.palette[ev.color_index].hex,
            )
            for ev in index.events_at(px, py)
        ]

    return app
