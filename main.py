"""
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scanflow.api import api_router, scanflow_error_handler
from scanflow.core.config import Settings, settings as default_settings
from scanflow.core.errors import ScanflowError
from scanflow.integrations.classifier_client import ClassifierClient
from scanflow.pipelines.classification import ClassificationRouter
from scanflow.pipelines.sweepers import LifecycleSweepers
from scanflow.services.document_service import DocumentService
from scanflow.storage.folders import FolderStateMapper
from scanflow.storage.registry import DocumentRegistry

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    classifier_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application and wire its components.

    :param settings: Settings to use. Defaults to the environment settings
    :param classifier_transport: Optional httpx transport for the classifier client
    """
    settings = settings or default_settings

    registry = DocumentRegistry(settings.snapshot_path, lock_timeout=settings.LOCK_TIMEOUT)
    mapper = FolderStateMapper(settings.DATA_DIR, registry)
    classifier = ClassifierClient(
        settings.CLASSIFIER_URL,
        timeout=settings.CLASSIFIER_TIMEOUT,
        transport=classifier_transport,
    )
    router = ClassificationRouter(
        registry,
        mapper,
        classifier,
        review_threshold=settings.REVIEW_THRESHOLD,
        auto_process_threshold=settings.AUTO_PROCESS_THRESHOLD,
    )
    sweepers = LifecycleSweepers(
        registry,
        mapper,
        retention=timedelta(days=settings.RETENTION_DAYS),
        discovery_interval=settings.DISCOVERY_INTERVAL_SECONDS,
        purge_interval=settings.PURGE_INTERVAL_SECONDS,
        system_user=settings.DEFAULT_ACTOR,
    )
    service = DocumentService(registry, mapper, router, sweepers, max_upload_bytes=settings.MAX_UPLOAD_BYTES)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.log_config_summary()
        mapper.ensure_folders()
        registry.load()
        report = await sweepers.reconcile()
        if report.updated or report.removed:
            logger.info(
                f"Startup reconciliation: {len(report.updated)} updated, {len(report.removed)} removed"
            )
        if settings.SWEEPERS_ENABLED:
            sweepers.start()
        yield
        await sweepers.stop()
        await classifier.aclose()

    app = FastAPI(
        title=settings.API_TITLE,
        description=settings.API_DESCRIPTION,
        version=settings.API_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.sweepers = sweepers
    app.state.document_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ScanflowError, scanflow_error_handler)
    app.include_router(api_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": settings.API_TITLE,
            "version": settings.API_VERSION,
            "status": "running",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "documents": len(registry),
            "sweepers": "running" if settings.SWEEPERS_ENABLED else "disabled",
        }

    return app


# Configure logging
logging.basicConfig(level=default_settings.LOG_LEVEL)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        log_level=default_settings.LOG_LEVEL.lower()
    )
