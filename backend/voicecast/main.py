"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from voicecast import __version__
from voicecast.core.config import settings
from voicecast.core.logging import setup_logging
from voicecast.core.metrics import get_content_type, get_metrics, set_app_info
from voicecast.core.middleware import CorrelationIdMiddleware, TracingMiddleware
from voicecast.core.tracing import setup_tracing
from voicecast.modules.broadcast.router import router as broadcast_router
from voicecast.modules.settings.router import router as settings_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=__version__,
    description="Voice broadcast fan-out, recipient selection and replies.",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {"name": "health", "description": "Health check endpoints"},
        {"name": "broadcasts", "description": "Send, list and reply to voice broadcasts"},
        {"name": "admin", "description": "Broadcast limit configuration"},
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=__version__,
    environment=settings.ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=__version__, environment=settings.ENVIRONMENT)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(broadcast_router, prefix=settings.API_V1_PREFIX)
app.include_router(settings_router, prefix=settings.API_V1_PREFIX)
