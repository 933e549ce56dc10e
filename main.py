"""
Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from services.errors import ErrorKind, GatewayError, RangeNotSatisfiable
from services.gateway import Gateway
from routes import extract_router, media_router, health_router, app_router

# Configure logging
handlers = [logging.StreamHandler()]
if config.LOG_TO_FILE:
    try:
        handlers.append(logging.FileHandler(config.LOG_FILE_NAME))
    except IOError as e:
        print(f"⚠️  Could not create log file: {e}")

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper()),
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=handlers
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Video Gateway API")
    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = Gateway.from_config()
    await app.state.gateway.start()

    yield

    # Shutdown
    logger.info("Shutting down API")
    await app.state.gateway.stop()


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    app = FastAPI(
        title="Video Gateway API",
        description="Metadata, previews and downloads for YouTube, Instagram, TikTok and Facebook videos",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.gateway = gateway

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "Content-Disposition"],
    )

    # Include routers
    app.include_router(app_router)
    app.include_router(extract_router)
    app.include_router(media_router)
    app.include_router(health_router)

    # Error handlers
    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Classified failures map to their status and a JSON body."""
        if exc.status_code >= 500:
            logger.error(f"❌ {request.url.path} failed [{exc.kind.value}]: {exc.message}")
        else:
            logger.warning(f"{request.url.path} rejected [{exc.kind.value}]: {exc.message}")
        headers = None
        if isinstance(exc, RangeNotSatisfiable):
            headers = {"Content-Range": f"bytes */{exc.file_size}"}
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "kind": ErrorKind.INVALID_REQUEST.value,
                "details": "; ".join(str(error.get("msg")) for error in exc.errors()),
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """General exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "kind": ErrorKind.INTERNAL.value}
        )

    return app


app = create_app()


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description='Video Gateway API')
    parser.add_argument('--host', default=config.HOST, help='Host to bind to')
    parser.add_argument('--port', type=int, default=config.PORT, help='Port to bind to')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload')
    parser.add_argument('--log-level', default=config.LOG_LEVEL, choices=['debug', 'info', 'warning', 'error'], help='Log level')

    args = parser.parse_args()

    # Update config from args
    config.HOST = args.host
    config.PORT = args.port
    config.RELOAD = args.reload or config.RELOAD
    config.LOG_LEVEL = args.log_level

    print(f"🚀 Starting Video Gateway API")
    print(f"📍 Host: {config.HOST}")
    print(f"🔌 Port: {config.PORT}")
    print(f"🔄 Reload: {config.RELOAD}")
    print(f"📝 Log Level: {config.LOG_LEVEL}")
    print(f"🎞️  Download strategy: {config.DOWNLOAD_STRATEGY}")
    print(f"🌐 API Documentation: http://{config.HOST}:{config.PORT}/docs")
    print(f"❤️  Health Check: http://{config.HOST}:{config.PORT}/health")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.RELOAD,
        log_level=config.LOG_LEVEL
    )
