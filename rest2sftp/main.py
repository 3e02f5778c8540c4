# rest2sftp/main.py - FastAPI application exposing a remote SFTP store over HTTP

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.files import method_not_allowed, router as files_router
from .core.config import ServerConfig, load_config
from .core.errors import OperationError
from .core.sftp_session import SessionProvider, build_session_provider
from .utils.responses import respond_with_json

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(config: ServerConfig) -> None:
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(config.log_level)
    # paramiko is chatty at INFO (one line per channel open/close)
    logging.getLogger("paramiko").setLevel(max(logging.WARNING, logging.getLogger().level))


def probe_remote(provider: SessionProvider) -> None:
    """Opens (or checks out) a session and stats the remote working directory."""
    with provider.session() as session:
        session.stat(".")


# --- Lifespan Context Manager ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    config: ServerConfig = app.state.config
    provider: SessionProvider = app.state.session_provider
    logger.info(f"Application startup: sftp server {config.sftp_address}, base path '{config.rest_base_path}'")
    if config.sftp_verify_on_startup:
        # Misconfiguration is fatal here; failures after startup are handled per request
        try:
            await run_in_threadpool(probe_remote, provider)
        except OperationError as e:
            logger.critical(f"SFTP server check failed during startup: {e}")
            raise
        logger.info("SFTP server check passed during startup.")
    yield
    logger.info("Application shutdown...")
    await run_in_threadpool(provider.close)


def create_app(config: ServerConfig | None = None, session_provider: SessionProvider | None = None) -> FastAPI:
    """
    Builds the gateway application.

    Args:
        config: Server configuration; read from the environment when omitted.
        session_provider: Source of SFTP sessions; built from `config` when omitted.
    """
    config = config or load_config()
    configure_logging(config)

    app = FastAPI(
        title="REST to SFTP Gateway",
        description="Lists, downloads, uploads and deletes files on a remote SFTP server through plain HTTP verbs.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.session_provider = session_provider or build_session_provider(config)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"middleware {request.url} method {request.method}")
        return await call_next(request)

    @app.exception_handler(OperationError)
    async def operation_error_handler(request: Request, exc: OperationError):
        legacy = request.app.state.config.rest_legacy_errors
        return respond_with_json(exc.http_status(legacy), exc.to_envelope(legacy))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Methods the router does not accept get the gateway's plain-text 405
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return method_not_allowed(request.method, request.url.path)
        return await http_exception_handler(request, exc)

    # Registered before the catch-all router so it is not treated as a remote path
    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check(request: Request):
        """Reports whether a remote session can currently be established."""
        provider: SessionProvider = request.app.state.session_provider
        sftp_status = "unavailable"
        try:
            await run_in_threadpool(probe_remote, provider)
            sftp_status = "available"
        except OperationError as e:
            logger.warning(f"Health check could not reach the SFTP server: {e}")
        return {"status": "ok", "sftp_status": sftp_status, "session_mode": provider.mode}

    app.include_router(files_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serves the app with uvicorn."""
    import uvicorn
    config: ServerConfig = app.state.config
    logger.info(f"rest2sftp service is running at port {config.rest_port}")
    uvicorn.run(app, host=config.rest_host, port=config.rest_port)


# --- Main execution block ---
if __name__ == "__main__":
    run()
