import time
import traceback
import uuid
from contextlib import asynccontextmanager
from os import environ

import logfire
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from livecast.api.v1.errors import app_error_handler
from livecast.app_config import get_app_environ_config, get_pipeline_settings
from livecast.domain.archive.export import ArchiveExporter
from livecast.domain.archive.store import BeanieCaptionStore, CaptionStore, MemoryCaptionStore
from livecast.domain.broadcast.hub import BroadcastHub
from livecast.domain.captioning.registry import SessionRegistry
from livecast.schemas.init import init_schema
from livecast.services.integrations.s3_storage import S3Service
from livecast.services.integrations.transcriber_service import TranscriberService
from livecast.services.integrations.translator_service import TranslatorService
from livecast.shared.api.utils import (
    api_failure,
    init_logger,
    load_routes,
    validation_exception_handler,
)
from livecast.shared.storage.mongo import get_mongo_manager
from livecast.shared.storage.redis import get_redis_manager
from livecast.utils.app_errors import AppError, AppErrorCode

SHUTDOWN_TIMEOUT_SECONDS = 60.0


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = api_failure(
                errcode=AppErrorCode.E_INTERNAL_ERROR,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=500,
                content=failure.model_dump(),
            )


async def build_caption_store() -> CaptionStore:
    settings = get_app_environ_config()
    if settings.ARCHIVE_BACKEND == "mongo":
        logger.info(f"Caption archive backend: MongoDB (label '{settings.MONGO_LABEL}')")
        await init_schema(settings.MONGO_LABEL)
        return BeanieCaptionStore()

    logger.info("Caption archive backend: in-memory")
    return MemoryCaptionStore()


def build_session_registry(store: CaptionStore) -> SessionRegistry:
    settings = get_app_environ_config()
    pipeline = get_pipeline_settings()

    exporter = None
    s3 = S3Service(settings)
    if not settings.DEMO_MODE and s3.configured:
        exporter = ArchiveExporter(store, s3)

    redis_relay = None
    if settings.REDIS_RELAY_ENABLED:
        redis_relay = get_redis_manager().get_client(settings.REDIS_LABEL)

    return SessionRegistry(
        store=store,
        hub=BroadcastHub(
            send_timeout=pipeline.subscriber_send_timeout,
            max_failures=pipeline.subscriber_max_failures,
        ),
        transcriber=TranscriberService(),
        translator=TranslatorService(),
        settings=pipeline,
        exporter=exporter,
        redis_relay=redis_relay,
    )


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    logger.info("Application startup...")

    settings = get_app_environ_config()
    server.state.redis_manager = get_redis_manager()

    store = await build_caption_store()
    server.state.session_registry = build_session_registry(store)

    load_routes(server, "/api/v1")

    if settings.LOGFIRE_ENABLE:
        logger.info("Logfire initializing")

        logfire.configure(
            token=settings.LOGFIRE_TOKEN,
            service_name="livecast-captions",
            service_version=environ.get("BUILD_COMMIT") or "dev",
        )

        logger.info("Logfire instrument fastapi")
        logfire.instrument_fastapi(server, capture_headers=True)

        logger.info("Logfire instrument pydantic")
        logfire.instrument_pydantic()

    yield

    logger.info("Application shutdown...")

    registry: SessionRegistry = server.state.session_registry
    await registry.shutdown(timeout=SHUTDOWN_TIMEOUT_SECONDS)
    await registry.hub.close()
    await server.state.redis_manager.close_all()
    if settings.ARCHIVE_BACKEND == "mongo":
        get_mongo_manager().close_all()


app = FastAPI(
    version="1.0",
    title="Livecast Captions API",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(HTTPLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,  # type: ignore
    allow_origins=get_app_environ_config().API_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, app_error_handler)  # type: ignore


def build_granian_kwargs():
    settings = get_app_environ_config()
    kwargs = {
        "interface": "asgi",
        "address": settings.API_HOST,
        "port": settings.API_PORT,
        "workers": settings.API_WORKERS,
        "reload": settings.DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs()
    Granian("livecast.main:app", **granian_kwargs).serve()
