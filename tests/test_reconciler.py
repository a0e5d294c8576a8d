import asyncio

import pytest

from storefront.errors import OrderCreationError, PaymentNotSuccessfulError
from storefront.reconciliation.reconciler import OrderReconciler, ReconciliationOutcome
from storefront.schemas.orders import OrderStatus, PaymentInfo
from storefront.schemas.payments import ConfirmationEvent
from storefront.storage.orders import InMemoryOrderRepository


def captured(payment_id="pay_1", order_id="order_1", status="captured"):
    return ConfirmationEvent(gateway_payment_id=payment_id, gateway_order_id=order_id,
                             verified_payment_status=status, payment_method="upi")


@pytest.fixture
def seed_order(orders, make_draft):
    async def _seed(status: OrderStatus, payment_id="pay_1", order_id="order_1"):
        info = PaymentInfo(gateway_payment_id=payment_id, gateway_order_id=order_id)
        return await orders.create(make_draft().to_order(info, status))
    return _seed


# =============================================================================
# CLIENT CONFIRMATION
# =============================================================================

async def test_confirm_creates_processing_order(reconciler, orders, make_draft):
    result = await reconciler.confirm_client_payment(captured(), make_draft())

    assert result.outcome == ReconciliationOutcome.CREATED
    assert result.order.status == OrderStatus.PROCESSING
    assert result.order.payment_info.gateway_payment_id == "pay_1"
    assert result.order.payment_info.payment_status == "captured"
    assert result.warnings == []
    assert len(await orders.list_all()) == 1


async def test_confirm_replay_returns_existing(reconciler, orders, make_draft):
    first = await reconciler.confirm_client_payment(captured(), make_draft())
    second = await reconciler.confirm_client_payment(captured(), make_draft())

    assert second.outcome == ReconciliationOutcome.EXISTING
    assert second.order.id == first.order.id
    assert len(await orders.list_all()) == 1


async def test_concurrent_confirmations_create_one_order(reconciler, orders, make_draft):
    results = await asyncio.gather(*(
        reconciler.confirm_client_payment(captured(), make_draft()) for _ in range(5)
    ))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(ReconciliationOutcome.CREATED) == 1
    assert outcomes.count(ReconciliationOutcome.EXISTING) == 4
    assert len({r.order.id for r in results}) == 1
    assert len(await orders.list_all()) == 1


async def test_confirm_without_draft_is_already_handled(reconciler, orders):
    result = await reconciler.confirm_client_payment(captured(), None)

    assert result.outcome == ReconciliationOutcome.ALREADY_HANDLED
    assert result.order is None
    assert "contact support" in result.warnings[0]
    assert await orders.list_all() == []


@pytest.mark.parametrize("status", ["failed", "created", None])
async def test_confirm_rejects_unsuccessful_payment(reconciler, orders, make_draft, status):
    with pytest.raises(PaymentNotSuccessfulError):
        await reconciler.confirm_client_payment(captured(status=status), make_draft())
    assert await orders.list_all() == []


async def test_confirm_advances_pending_order(reconciler, seed_order, make_draft):
    pending = await seed_order(OrderStatus.PENDING)

    result = await reconciler.confirm_client_payment(captured(), make_draft())

    assert result.outcome == ReconciliationOutcome.EXISTING
    assert result.order.id == pending.id
    assert result.order.status == OrderStatus.PROCESSING
    assert result.previous_status == OrderStatus.PENDING


async def test_confirm_marks_coupon_and_saves_shipping(reconciler, coupons, customers,
                                                       make_coupon, make_draft):
    await coupons.save(make_coupon())
    draft = make_draft(coupon_code="SAVE10", discount="100", total="950")

    result = await reconciler.confirm_client_payment(captured(), draft)

    assert result.warnings == []
    assert (await coupons.get_by_code("SAVE10")).used_count == 1
    assert (await customers.get_shipping_info("user_1")) == draft.shipping_info


async def test_auxiliary_failures_become_warnings(reconciler, orders, make_draft):
    # coupon was never saved, so marking it fails
    result = await reconciler.confirm_client_payment(
        captured(), make_draft(coupon_code="GHOST", discount="10", total="1040")
    )

    assert result.outcome == ReconciliationOutcome.CREATED
    assert result.warnings == ["Coupon GHOST could not be marked as used"]
    assert len(await orders.list_all()) == 1


async def test_store_failure_raises_order_creation_error(make_draft):
    class BrokenRepository(InMemoryOrderRepository):
        async def create(self, order):
            raise RuntimeError("connection reset")

    reconciler = OrderReconciler(BrokenRepository())

    with pytest.raises(OrderCreationError) as exc_info:
        await reconciler.confirm_client_payment(captured(), make_draft())

    assert exc_info.value.payment_id == "pay_1"
    assert "pay_1" in exc_info.value.message


async def test_order_lookup_failure_raises_order_creation_error(make_draft):
    class UnreachableRepository(InMemoryOrderRepository):
        async def find_by_payment_key(self, gateway_payment_id=None, gateway_order_id=None):
            raise ConnectionError("order store unreachable")

    reconciler = OrderReconciler(UnreachableRepository())

    with pytest.raises(OrderCreationError) as exc_info:
        await reconciler.confirm_client_payment(captured(), make_draft())

    assert exc_info.value.payment_id == "pay_1"
    assert isinstance(exc_info.value.cause, ConnectionError)


# =============================================================================
# WEBHOOK SIGNALS
# =============================================================================

async def test_captured_without_order_creates_nothing(reconciler, orders):
    result = await reconciler.on_payment_captured(captured())

    assert result.outcome == ReconciliationOutcome.NOT_FOUND
    assert await orders.list_all() == []


async def test_captured_advances_pending_once(reconciler, seed_order):
    await seed_order(OrderStatus.PENDING)

    first = await reconciler.on_payment_captured(captured())
    second = await reconciler.on_payment_captured(captured())

    assert first.outcome == ReconciliationOutcome.TRANSITIONED
    assert first.order.status == OrderStatus.PROCESSING
    assert second.outcome == ReconciliationOutcome.UNCHANGED
    assert second.order.status == OrderStatus.PROCESSING


@pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED])
async def test_captured_never_regresses(reconciler, orders, seed_order, status):
    order = await seed_order(status)

    result = await reconciler.on_payment_captured(captured())

    assert result.outcome == ReconciliationOutcome.UNCHANGED
    assert (await orders.get(order.id)).status == status


async def test_order_paid_matches_gateway_order(reconciler, seed_order):
    await seed_order(OrderStatus.PENDING)

    result = await reconciler.on_order_paid(
        ConfirmationEvent(gateway_order_id="order_1", verified_payment_status="paid")
    )

    assert result.outcome == ReconciliationOutcome.TRANSITIONED
    assert result.order.status == OrderStatus.PROCESSING


@pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PROCESSING])
async def test_failed_payment_cancels_unfulfilled_order(reconciler, seed_order, status):
    await seed_order(status)

    result = await reconciler.on_payment_failed(captured(status="failed"))

    assert result.outcome == ReconciliationOutcome.TRANSITIONED
    assert result.order.status == OrderStatus.CANCELLED
    assert result.previous_status == status


@pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.DELIVERED])
async def test_failed_payment_on_fulfilled_order_is_conflict(reconciler, orders, seed_order, status):
    order = await seed_order(status)

    result = await reconciler.on_payment_failed(captured(status="failed"))

    assert result.outcome == ReconciliationOutcome.CONFLICT
    assert result.warnings
    assert (await orders.get(order.id)).status == status


async def test_failed_payment_on_cancelled_order_is_noop(reconciler, seed_order):
    await seed_order(OrderStatus.CANCELLED)

    result = await reconciler.on_payment_failed(captured(status="failed"))

    assert result.outcome == ReconciliationOutcome.UNCHANGED


async def test_failed_retry_does_not_cancel_paid_order(reconciler, orders, seed_order):
    order = await seed_order(OrderStatus.PROCESSING, payment_id="pay_ok")

    result = await reconciler.on_payment_failed(captured(payment_id="pay_retry", status="failed"))

    assert result.outcome == ReconciliationOutcome.UNCHANGED
    assert (await orders.get(order.id)).status == OrderStatus.PROCESSING


async def test_failed_without_order(reconciler):
    result = await reconciler.on_payment_failed(captured(status="failed"))
    assert result.outcome == ReconciliationOutcome.NOT_FOUND
