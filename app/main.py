"""
Main application entry point.
Builds the FastAPI app (middleware, routes, error handlers, health check) and
wraps it with the Socket.IO relay into the ASGI app served by uvicorn.
"""
import logging
import traceback
from uuid import uuid4
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import socketio
from core.config import settings
from db.database import engine, init_db

# Prometheus metrics
from prometheus_fastapi_instrumentator import Instrumentator

# Configure structured JSON logging
from core.logging_config import configure_logging, request_id_var
configure_logging(service_name="propertysell-api", level=settings.log_level, enable_json=settings.log_json)

from api.schemas import ErrorResponse

logger = logging.getLogger(__name__)

API_ROUTES = [
    "/api/users",
    "/api/auth",
    "/api/posts",
    "/api/message",
    "/api/conversation",
    "/api/notification",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info(f"Starting Property Sell API (environment: {settings.environment})")
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    yield

    logger.info("Shutting down Property Sell API...")
    engine.dispose()


# Create FastAPI application
app = FastAPI(
    title="Property Sell API",
    description="Listings, chat and notifications backend with a Socket.IO relay",
    version="1.0.0",
    lifespan=lifespan
)

# Exposes /metrics endpoint with HTTP request metrics
Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


# Request ID middleware
class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            logger.info(
                f"{request.method} {request.url.path} - "
                f"Client: {request.client.host if request.client else 'unknown'}"
            )
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(f"Response: {response.status_code}")
            return response
        finally:
            request_id_var.reset(token)


# Add middlewares
app.add_middleware(RequestIDMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


# Global error handlers
def _error_response(status_code: int, message: str, headers=None, **extra) -> JSONResponse:
    body = ErrorResponse(statusCode=status_code, message=message).model_dump(exclude_none=True)
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        errors=exc.errors()
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    extra = {}
    if not settings.is_production:
        extra["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", **extra)


# Register endpoint routers
from api.endpoints import (
    users_router, auth_router, posts_router,
    conversations_router, messages_router, notifications_router
)
from api.health import router as health_router
from api.webhooks import router as webhooks_router
from api.frontend import mount_frontend
from api.socketio_server import sio

app.include_router(health_router)
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(posts_router, prefix="/api/posts", tags=["Posts"])
app.include_router(messages_router, prefix="/api/message", tags=["Messages"])
app.include_router(conversations_router, prefix="/api/conversation", tags=["Conversations"])
app.include_router(notifications_router, prefix="/api/notification", tags=["Notifications"])
app.include_router(webhooks_router, prefix="/api/webhooks", tags=["Webhooks"])


if settings.is_production:
    mount_frontend(app, settings.static_dir)
else:
    @app.get("/", tags=["Health"])
    async def root():
        """Service banner listing the API route prefixes."""
        return {
            "message": "API Server Running",
            "version": "1.0.0",
            "endpoints": API_ROUTES
        }


# ASGI entry point: Socket.IO traffic under /socket.io, everything else to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:asgi_app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower()
    )
