from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastmcp import FastMCP

# Internal Imports
from connections.redis_store import RedisJobStore
from core.config import Settings, get_settings
from core.dependencies import get_store
from core.exceptions import (
    InvalidDimensionError,
    InvalidTransitionError,
    JobNotFoundError,
    PrintQueueError,
    StoreUnavailableError,
    ToolpathError,
    UnsupportedShapeKindError,
    UpstreamUnavailableError,
)
from core.logging import configure_logging
from core.telemetry import setup_telemetry
from domain.interfaces import JobStore
from domain.models import (
    APIResponse,
    ConfirmPaymentRequest,
    ErrorDetails,
    FailJobRequest,
    OrderRequest,
    PreviewRequest,
)
from services.job_lifecycle import JobLifecycle
from services.order_service import OrderService

logger = structlog.get_logger()

ERROR_STATUS = {
    InvalidDimensionError: 422,
    UnsupportedShapeKindError: 422,
    InvalidTransitionError: 409,
    JobNotFoundError: 404,
    StoreUnavailableError: 503,
    UpstreamUnavailableError: 502,
    ToolpathError: 500,
}


def error_response(exc: PrintQueueError) -> JSONResponse:
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    body = APIResponse[Any](success=False, error=ErrorDetails(code=exc.code, message=exc.message))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def create_app(settings: Optional[Settings] = None, store: Optional[JobStore] = None) -> FastAPI:
    settings = settings or get_settings()
    store = store or get_store(settings)

    lifecycle = JobLifecycle(store, settings.lifecycle_config())
    orders = OrderService(lifecycle, settings.payment_terms())

    # MCP Server Setup
    mcp = FastMCP(settings.APP_NAME)

    @mcp.tool(name="preview_print")
    async def preview_print_tool(prompt: str) -> Dict[str, Any]:
        """
        Describes the shape a prompt turns into, with volume and print time.
        """
        logger.info("mcp_tool_called", tool="preview_print", prompt=prompt)
        return await orders.preview(prompt=prompt)

    @mcp.tool(name="get_order_status")
    async def order_status_tool(order_id: str) -> Dict[str, Any]:
        """
        Returns the status of a print order.
        """
        logger.info("mcp_tool_called", tool="get_order_status", order_id=order_id)
        return await orders.order_status(order_id)

    mcp_app = mcp.http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup_initiated", env=settings.ENV)
        async with mcp_app.lifespan(app):
            yield
        if isinstance(store, RedisJobStore):
            await store.close()
        logger.info("shutdown_initiated")

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan, version="1.0.0")
    app.state.settings = settings
    app.state.lifecycle = lifecycle
    app.state.orders = orders

    # Exception Handlers
    @app.exception_handler(PrintQueueError)
    async def print_queue_error_handler(request: Request, exc: PrintQueueError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        body = APIResponse[Any](success=False, error=ErrorDetails(code="validation_error", message=problems))
        return JSONResponse(status_code=422, content=body.model_dump(exclude_none=True))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {"code": "internal_error", "message": "An unexpected error occurred."},
            },
        )

    app.mount("/mcp", mcp_app)

    # --- Customer Endpoints ---
    @app.post("/api/preview")
    async def preview_endpoint(body: PreviewRequest) -> Dict[str, Any]:
        return await orders.preview(prompt=body.prompt, shape=body.shape)

    @app.post("/api/order")
    async def create_order_endpoint(body: OrderRequest):
        """
        Creates the job and answers 402 with the payment details.
        """
        payment_request = await orders.create_order(prompt=body.prompt, shape=body.shape)
        return JSONResponse(status_code=402, content=payment_request)

    @app.post("/api/order/{job_id}/confirm")
    async def confirm_payment_endpoint(job_id: str, body: ConfirmPaymentRequest) -> Dict[str, Any]:
        return await orders.confirm_payment(job_id, body.tx_id)

    @app.get("/api/order/{job_id}")
    async def order_status_endpoint(job_id: str) -> Dict[str, Any]:
        return await orders.order_status(job_id)

    # --- Print Agent Endpoints ---
    @app.get("/api/order/{job_id}/stl")
    async def download_stl_endpoint(job_id: str):
        job = await lifecycle.get(job_id)
        return Response(
            content=job.mesh_data,
            media_type="application/sla",
            headers={"Content-Disposition": f'attachment; filename="{job_id}.stl"'},
        )

    @app.get("/api/queue")
    async def queue_endpoint() -> Dict[str, Any]:
        jobs = await lifecycle.queued_jobs()
        return {"jobs": [job.queue_view() for job in jobs]}

    @app.get("/api/queue/next")
    async def next_job_endpoint() -> Dict[str, Any]:
        job = await lifecycle.peek_next()
        return {"job": job.queue_view() if job else None}

    @app.get("/api/queue/current")
    async def current_job_endpoint() -> Dict[str, Any]:
        job = await lifecycle.in_flight()
        return {"job": job.queue_view() if job else None}

    @app.post("/api/order/{job_id}/printing")
    async def printing_endpoint(job_id: str) -> Dict[str, Any]:
        job = await lifecycle.begin_printing(job_id)
        return {"success": True, "status": job.status.value}

    @app.post("/api/order/{job_id}/complete")
    async def complete_endpoint(job_id: str) -> Dict[str, Any]:
        job = await lifecycle.complete(job_id)
        return {"success": True, "status": job.status.value}

    @app.post("/api/order/{job_id}/fail")
    async def fail_endpoint(job_id: str, body: FailJobRequest) -> Dict[str, Any]:
        job = await lifecycle.fail(job_id, body.reason)
        return {"success": True, "status": job.status.value}

    # --- Health Check ---
    @app.get("/health")
    def health_check():
        return {"status": "ok", "env": settings.ENV}

    return app


def build_app() -> FastAPI:
    settings = get_settings()
    configure_logging(json_logs=(settings.ENV == "production"), log_level=settings.LOG_LEVEL, service="print-queue-api")
    setup_telemetry(settings.APP_NAME)
    return create_app(settings)


# uvicorn main:build_app --factory
