from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Standard Error Struct
class ErrorDetails(BaseModel):
    code: str
    message: str
    trace_id: Optional[str] = None


class APIResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[ErrorDetails] = None


# Domain Models
class ShapeKind(str, Enum):
    CUBE = "cube"
    CYLINDER = "cylinder"
    SPHERE = "sphere"
    CONE = "cone"
    TORUS = "torus"


class ShapeDescriptor(BaseModel):
    """
    Parametric description of a primitive solid. All dimensions are millimeters.
    Missing dimensions are filled with defaults by the mesh builder.
    """

    model_config = ConfigDict(frozen=True)

    kind: ShapeKind
    dimensions: Dict[str, float] = Field(default_factory=dict)
    units: Literal["mm"] = "mm"


class JobStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(BaseModel):
    """
    One request to fabricate a shape. Persisted as a flat JSON document
    under ``job:<id>`` with camelCase keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    prompt: str
    shape: ShapeDescriptor
    mesh_data: str
    status: JobStatus = JobStatus.PENDING_PAYMENT
    payment_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    printed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    def to_document(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_document(cls, raw: str) -> "Job":
        return cls.model_validate_json(raw)

    def public_view(self) -> Dict[str, Any]:
        """Status view served to customers (no mesh, no prompt)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={"id", "status", "shape", "created_at", "paid_at", "printed_at", "failure_reason"},
        )

    def queue_view(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, include={"id", "shape", "status", "paid_at"})


class QueuedJob(BaseModel):
    """The slice of a Job the print agent sees."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    shape: ShapeDescriptor
    status: JobStatus
    paid_at: Optional[datetime] = None


class PrinterStatus(BaseModel):
    ready: bool
    print_state: str = "unknown"  # standby, printing, paused, complete, cancelled, error
    message: Optional[str] = None

    @property
    def printing(self) -> bool:
        return self.print_state in ("printing", "paused")


# --- API Payloads ---


class ShapeInput(BaseModel):
    """Explicit shape supplied by a client instead of a prompt."""

    kind: str
    dimensions: Dict[str, float] = Field(default_factory=dict)


class PreviewRequest(BaseModel):
    prompt: Optional[str] = Field(default=None, max_length=500)
    shape: Optional[ShapeInput] = None


class OrderRequest(PreviewRequest):
    pass


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_id: str = Field(..., alias="txId", min_length=1)


class FailJobRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class MeshStats(BaseModel):
    triangles: int
    vertices: int
    is_watertight: bool
    is_winding_consistent: bool
    volume_cm3: float
    bounds: List[List[float]]
