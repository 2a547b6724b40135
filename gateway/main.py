"""FastAPI application factory for the Status Gateway.

Wires together configuration, structured logging, lifespan management,
route registration, error envelopes and HTTP request logging middleware.

Collaborators (broker, job queue, optional in-process worker) are built once
in the lifespan, or passed in by the caller, and live on app.state.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gateway import __version__
from gateway.logging_config import configure_logging
from gateway.routes import admin, health, jobs
from job_queue.broker import Broker
from job_queue.operations import JobQueue, default_options_from_settings
from validation.config import QueueSettings, get_settings
from validation.errors import NotFoundError, QueueError, ValidationError

logger = logging.getLogger(__name__)


def _print_startup_banner(settings: QueueSettings, embedded: bool) -> None:
    """Log the startup banner at info level."""
    logger.info(
        "Queue gateway starting",
        extra={
            "version": __version__,
            "port": settings.gateway_port,
            "data_dir": settings.data_dir,
            "mail_provider": settings.mail_provider,
            "embedded_workers": embedded,
        },
    )
    # Also emit a human-readable summary for log tailing
    logger.info(
        f"Feedback queue gateway v{__version__} | "
        f"Port: {settings.gateway_port} | "
        f"Data: {settings.data_dir} | "
        f"Retry: {settings.job_attempts}x {settings.backoff_type}/{settings.backoff_delay_ms}ms | "
        f"Workers: {'embedded' if embedded else 'external'}"
    )


def _start_embedded_worker(settings: QueueSettings, broker: Broker):
    """Run a worker for every queue inside the gateway process."""
    from handlers import build_registry
    from mailer.transport import build_transport
    from users.store import UserStore
    from worker.processor import JobWorker

    registry = build_registry(
        build_transport(settings),
        UserStore(settings.resolved_users_db_path),
    )
    worker = JobWorker.from_settings(broker, registry, settings)
    worker.start()
    return worker


def create_app(
    settings: Optional[QueueSettings] = None,
    job_queue: Optional[JobQueue] = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Configuration (default: get_settings())
        job_queue: Pre-built queue; when omitted one is created from settings
            at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Runs on startup: load config, build the queue, optionally start workers."""
        cfg = settings or get_settings()
        app.state.settings = cfg
        app.state.started_at = time.time()
        app.state.worker = None

        if job_queue is None:
            broker = await run_in_threadpool(Broker.from_settings, cfg)
            app.state.job_queue = JobQueue(broker, default_options_from_settings(cfg))
        else:
            app.state.job_queue = job_queue

        if cfg.embedded_workers:
            # Maintenance and thread startup block; keep them off the event loop
            app.state.worker = await run_in_threadpool(
                _start_embedded_worker, cfg, app.state.job_queue.broker
            )

        _print_startup_banner(cfg, cfg.embedded_workers)

        yield

        if app.state.worker is not None:
            await run_in_threadpool(app.state.worker.stop)
        logger.info("Queue gateway shutting down")

    app = FastAPI(
        title="feedback-queue gateway",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,    # Internal API, called only by the web tier
        redoc_url=None,
    )

    # Route registration
    app.include_router(jobs.router)
    app.include_router(health.router)
    app.include_router(admin.router)

    # ── Error envelopes ──────────────────────────────────────────────────────

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "; ".join(problems) or "Invalid request"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        message = "Job not found" if request.url.path.startswith("/api/job-status/") else str(exc)
        return JSONResponse(status_code=404, content={"success": False, "message": message})

    @app.exception_handler(QueueError)
    async def queue_error(request: Request, exc: QueueError) -> JSONResponse:
        logger.error("Queue error", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})

    # ── Request logging middleware ───────────────────────────────────────────

    @app.middleware("http")
    async def log_requests(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        """Log all incoming requests with method, path, status, and response time."""
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "HTTP request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(elapsed_ms, 2),
            },
        )
        return response

    return app


# ── Entry point ───────────────────────────────────────────────────────────────

def run() -> None:
    """Start the gateway under uvicorn (console script: feedback-queue-gateway)."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    settings.log_config()
    uvicorn.run(
        create_app(settings),
        host=settings.gateway_host,
        port=settings.gateway_port,
        log_level="debug" if settings.log_level == "trace" else settings.log_level,
        access_log=False,  # We handle request logging ourselves
    )


if __name__ == "__main__":
    run()
