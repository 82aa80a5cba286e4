"""HTTP layer serving stored objects at the URLs returned by get_public_url.

Public buckets are served to anyone. Private buckets require
``Authorization: Bearer <session id>`` naming a valid session.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from localbase import __version__
from localbase.client import LocalClient

logger = structlog.get_logger()


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(client: LocalClient) -> FastAPI:
    """
    Build the FastAPI application around an (uninitialized) client.

    Tables and buckets are created in the lifespan handler.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "application_startup",
            version=__version__,
            database=str(client.store.database_path),
            storage=str(client.storage.root),
        )
        try:
            await client.initialize()
        except Exception as e:
            logger.error("client_init_failed", error=str(e), exc_info=True)
            raise
        yield
        client.close()
        logger.info("application_shutdown")

    app = FastAPI(
        title="localbase",
        version=__version__,
        description="Local object serving for the localbase emulation layer.",
        lifespan=lifespan,
    )
    app.state.client = client

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log all requests with timing and request ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        logger.info("request_started", method=request.method, path=request.url.path)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": str(exc) if client.settings.debug else "An internal error occurred",
            },
        )

    @app.get("/health")
    async def health():
        """Health check: the record store answers a trivial query."""
        try:
            await client.store.execute("SELECT 1")
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "error": str(e)},
            )
        return {"status": "healthy", "version": __version__}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/storage/{bucket}/{file_path:path}")
    async def serve_object(bucket: str, file_path: str, request: Request):
        """
        Serve object bytes.

        401 for a private bucket without a valid session, 404 for an unknown
        bucket or object, 400 for malformed paths.
        """
        bucket_result = await client.storage.get_bucket(bucket)
        if bucket_result.error:
            code = bucket_result.error.code
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND if code == "not_found" else status.HTTP_400_BAD_REQUEST,
                detail={"error": code, "message": bucket_result.error.message},
            )

        if not bucket_result.data.get("public"):
            token = _bearer_token(request)
            session_result = await client.auth.get_session(token) if token else None
            if session_result is None or session_result.error or session_result.data["session"] is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail={"error": "unauthorized", "message": "A valid session is required for this bucket"},
                    headers={"WWW-Authenticate": "Bearer"},
                )

        result = await client.storage.download(bucket, file_path)
        if result.error:
            error_status = {
                "not_found": status.HTTP_404_NOT_FOUND,
                "validation_error": status.HTTP_400_BAD_REQUEST,
            }.get(result.error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
            raise HTTPException(
                status_code=error_status,
                detail={"error": result.error.code, "message": result.error.message},
            )

        return Response(
            content=result.data["data"],
            media_type=result.data["content_type"],
            headers={"Content-Disposition": f'inline; filename="{result.data["name"]}"'},
        )

    return app
