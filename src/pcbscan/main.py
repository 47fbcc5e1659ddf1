"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pcbscan.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pcbscan.api.routes import router
from pcbscan.config import get_settings
from pcbscan.ml.inference import InferencePool
from pcbscan.ml.model_loader import ModelLoader
from pcbscan.ml.pipeline import DefectPipeline
from pcbscan.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings, pool: InferencePool) -> DefectPipeline:
    """Wire the loader and preprocessor into a pipeline sharing one inference pool."""
    return DefectPipeline(
        loader=ModelLoader(settings, pool),
        preprocessor=ImagePreprocessor(settings.max_image_pixels),
        pool=pool,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    inference_pool = InferencePool(settings)
    pipeline = build_pipeline(settings, inference_pool)
    app.state.inference_pool = inference_pool
    app.state.pipeline = pipeline

    logger.info(
        "Starting PCBScan (device=%s, max_concurrent=%s, manifest=%s)",
        settings.device,
        settings.max_concurrent,
        pipeline.loader.manifest_url,
    )
    # The model is loaded lazily by the first prediction or POST /api/v1/model/load.
    yield

    logger.info("Shutting down PCBScan")
    await pipeline.loader.aclose()
    inference_pool.shutdown()
    logger.info("PCBScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PCBScan",
        description="PCB defect classification from uploaded board images",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
