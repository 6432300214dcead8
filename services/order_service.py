import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog

from core.config import PaymentTerms
from core.exceptions import InvalidDimensionError
from domain.models import ShapeDescriptor, ShapeInput, utcnow
from services import mesh_builder
from services.job_lifecycle import JobLifecycle
from services.mesh_tools import MeshInspector
from services.prompt_parser import parse_prompt

logger = structlog.get_logger()


class OrderService:
    """
    Customer-facing operations: preview a shape, create an order that
    waits for payment, report order status.
    """

    def __init__(
        self,
        lifecycle: JobLifecycle,
        payment: PaymentTerms,
        inspector: Optional[MeshInspector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lifecycle = lifecycle
        self.payment = payment
        self.inspector = inspector or MeshInspector()
        self.clock = clock

    def resolve_shape(self, prompt: Optional[str], shape: Optional[ShapeInput]) -> ShapeDescriptor:
        """An explicit shape wins over the prompt; no input at all means the default cube."""
        if shape is not None:
            return mesh_builder.coerce_shape(shape.kind, shape.dimensions)
        if prompt:
            return parse_prompt(prompt)
        return mesh_builder.FALLBACK_SHAPE

    async def preview(self, prompt: Optional[str] = None, shape: Optional[ShapeInput] = None) -> Dict[str, Any]:
        descriptor = self.resolve_shape(prompt, shape)

        mesh_text = mesh_builder.build(descriptor)
        volume = mesh_builder.volume_cm3(descriptor)

        # trimesh loading is CPU bound
        stats = await asyncio.to_thread(self.inspector.inspect, mesh_text)

        logger.info("preview_generated", kind=descriptor.kind.value, volume_cm3=round(volume, 2))
        return {
            "shape": descriptor.model_dump(mode="json"),
            "volumeCm3": volume,
            "estimatedMinutes": mesh_builder.estimated_minutes(volume),
            "mesh": stats.model_dump(),
        }

    async def create_order(self, prompt: Optional[str] = None, shape: Optional[ShapeInput] = None) -> Dict[str, Any]:
        descriptor = self.resolve_shape(prompt, shape)
        try:
            mesh_text = mesh_builder.build(descriptor)
        except InvalidDimensionError as e:
            logger.warning("order_rejected", reason=str(e))
            raise

        job = await self.lifecycle.create(prompt or "", descriptor, mesh_text)

        return {
            "orderId": job.id,
            "amount": self.payment.amount_sats,
            "amountUsd": self.payment.amount_usd,
            "payTo": self.payment.pay_to,
            "tokenType": self.payment.token_type,
            "network": self.payment.network,
            "expiresAt": (self.clock() + self.payment.window).isoformat(),
        }

    async def confirm_payment(self, job_id: str, payment_ref: str) -> Dict[str, Any]:
        job = await self.lifecycle.confirm_payment(job_id, payment_ref)
        position = await self.lifecycle.queue_position(job_id)
        return {"success": True, "status": job.status.value, "position": position}

    async def order_status(self, job_id: str) -> Dict[str, Any]:
        job = await self.lifecycle.get(job_id)
        return job.public_view()
