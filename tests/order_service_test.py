from datetime import datetime, timedelta, timezone

import pytest

from connections.in_memory_store import InMemoryJobStore
from core.config import PaymentTerms
from core.exceptions import InvalidDimensionError
from domain.models import JobStatus, ShapeDescriptor, ShapeInput, ShapeKind
from services.job_lifecycle import JobLifecycle
from services.order_service import OrderService

NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryJobStore(clock=lambda: NOW)


@pytest.fixture
def lifecycle(store):
    return JobLifecycle(store, clock=lambda: NOW)


@pytest.fixture
def orders(lifecycle):
    payment = PaymentTerms(amount_sats=2500, pay_to="SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7", network="testnet")
    return OrderService(lifecycle, payment, clock=lambda: NOW)


def test_explicit_shape_wins_over_prompt(orders):
    shape = orders.resolve_shape("a big sphere", ShapeInput(kind="cone", dimensions={"radius": 5}))
    assert shape == ShapeDescriptor(kind=ShapeKind.CONE, dimensions={"radius": 5})


def test_no_input_means_default_cube(orders):
    assert orders.resolve_shape(None, None) == ShapeDescriptor(kind=ShapeKind.CUBE)


@pytest.mark.asyncio
async def test_preview_from_prompt(orders):
    preview = await orders.preview(prompt="cube 50mm")

    assert preview["shape"] == {
        "kind": "cube",
        "dimensions": {"width": 50.0, "height": 50.0, "depth": 50.0},
        "units": "mm",
    }
    assert preview["volumeCm3"] == pytest.approx(125.0)
    assert preview["estimatedMinutes"] == 188
    assert preview["mesh"]["triangles"] == 12
    assert preview["mesh"]["is_watertight"] is True


@pytest.mark.asyncio
async def test_preview_unsupported_kind_falls_back(orders):
    preview = await orders.preview(shape=ShapeInput(kind="text", dimensions={"width": 3}))

    assert preview["shape"]["kind"] == "cube"
    assert preview["shape"]["dimensions"] == {}
    assert preview["volumeCm3"] == pytest.approx(125.0)


@pytest.mark.asyncio
async def test_preview_rejects_negative_radius(orders):
    with pytest.raises(InvalidDimensionError):
        await orders.preview(shape=ShapeInput(kind="cylinder", dimensions={"radius": -5}))


@pytest.mark.asyncio
async def test_create_order_returns_payment_request(orders, lifecycle):
    order = await orders.create_order(prompt="a ball with 10mm radius")

    assert order["amount"] == 2500
    assert order["payTo"] == "SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7"
    assert order["tokenType"] == "sBTC"
    assert order["network"] == "testnet"
    assert order["expiresAt"] == (NOW + timedelta(minutes=30)).isoformat()

    job = await lifecycle.get(order["orderId"])
    assert job.status == JobStatus.PENDING_PAYMENT
    assert job.prompt == "a ball with 10mm radius"
    assert job.shape.kind == ShapeKind.SPHERE
    assert job.mesh_data.startswith("solid model")


@pytest.mark.asyncio
async def test_invalid_order_stores_nothing(orders, store):
    with pytest.raises(InvalidDimensionError):
        await orders.create_order(shape=ShapeInput(kind="cube", dimensions={"depth": 0}))

    assert store.data == {}


@pytest.mark.asyncio
async def test_confirm_payment_reports_position(orders):
    first = await orders.create_order(prompt="cube")
    second = await orders.create_order(prompt="cone")

    assert await orders.confirm_payment(first["orderId"], "tx1") == {"success": True, "status": "paid", "position": 1}
    assert await orders.confirm_payment(second["orderId"], "tx2") == {"success": True, "status": "paid", "position": 2}


@pytest.mark.asyncio
async def test_order_status_hides_mesh_and_prompt(orders):
    order = await orders.create_order(prompt="torus")

    status = await orders.order_status(order["orderId"])

    assert status["id"] == order["orderId"]
    assert status["status"] == "pending_payment"
    assert status["shape"]["kind"] == "torus"
    assert status["paidAt"] is None
    assert "meshData" not in status
    assert "prompt" not in status
