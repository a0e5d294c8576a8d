import httpx
import pytest

from storefront.confirmation import ClientConfirmationFlow, ConfirmationReason, RedirectParams
from storefront.errors import GatewayRequestError
from storefront.payments.gateway_client import RazorpayClient
from storefront.payments.verification import PaymentVerifier
from storefront.reconciliation.reconciler import OrderReconciler
from storefront.schemas.orders import OrderStatus
from storefront.storage.drafts import InMemoryDraftStore
from storefront.storage.orders import InMemoryOrderRepository


@pytest.fixture
def flow(verifier, reconciler, drafts):
    return ClientConfirmationFlow(verifier, reconciler, drafts)


@pytest.fixture
def redirect(sign_assertion, drafts, make_draft, gateway):
    """Stage a draft for order_1 and build the matching redirect parameters."""
    async def _redirect(payment_status="captured", stage=True, **overrides):
        gateway.add_payment("pay_1", "order_1", status=payment_status)
        token = None
        if stage:
            token = (await drafts.stage(make_draft(gateway_order_id="order_1"))).token
        params = {
            "razorpay_payment_id": "pay_1",
            "razorpay_order_id": "order_1",
            "razorpay_signature": sign_assertion("order_1", "pay_1"),
            "draft_token": token,
        }
        params.update(overrides)
        return RedirectParams(**params)
    return _redirect


async def test_verified_payment_creates_order_and_clears_draft(flow, redirect, orders, drafts):
    params = await redirect()

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.CONFIRMED
    assert result.success
    assert result.draft_cleared
    assert result.payment_status == "captured"
    assert await drafts.peek(params.draft_token) is None

    stored = await orders.list_all()
    assert len(stored) == 1
    assert stored[0].status == OrderStatus.PROCESSING
    assert stored[0].order_number == result.order_number


async def test_replayed_redirect_reports_existing_order(flow, redirect, orders):
    params = await redirect()
    first = await flow.confirm(params)

    second = await flow.confirm(params)

    assert second.reason == ConfirmationReason.ALREADY_CONFIRMED
    assert second.success
    assert second.order_id == first.order_id
    assert not second.draft_cleared
    assert len(await orders.list_all()) == 1


async def test_wrong_signature_rejected_before_gateway(flow, redirect, gateway, orders):
    params = await redirect(razorpay_signature="f" * 64)

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.VERIFICATION_FAILED
    assert not result.success
    assert gateway.fetch_calls == []
    assert await orders.list_all() == []


async def test_gateway_timeout_reports_unreachable(reconciler, drafts, signatures, redirect, orders):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = RazorpayClient(key_id="rzp_test_key", key_secret="secret",
                            base_url="https://gateway.test/v1", timeout_seconds=10,
                            transport=httpx.MockTransport(handler))
    flow = ClientConfirmationFlow(PaymentVerifier(signatures, client), reconciler, drafts)
    params = await redirect()

    result = await flow.confirm(params)
    await client.close()

    assert result.reason == ConfirmationReason.GATEWAY_UNREACHABLE
    assert result.reason != ConfirmationReason.VERIFICATION_FAILED
    assert result.payment_id == "pay_1"
    # draft kept so the shopper can retry
    assert await drafts.peek(params.draft_token) is not None
    assert await orders.list_all() == []


async def test_gateway_rejection_reports_gateway_error(flow, redirect, gateway):
    params = await redirect()
    gateway.error = GatewayRequestError("The id provided does not exist", gateway_status=400)

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.GATEWAY_ERROR
    assert "pay_1" in result.message


async def test_unsuccessful_payment_creates_nothing(flow, redirect, orders):
    result = await flow.confirm(await redirect(payment_status="failed"))

    assert result.reason == ConfirmationReason.PAYMENT_NOT_SUCCESSFUL
    assert result.payment_status == "failed"
    assert await orders.list_all() == []


async def test_missing_draft_is_already_handled(flow, redirect, orders):
    result = await flow.confirm(await redirect(stage=False))

    assert result.reason == ConfirmationReason.ALREADY_HANDLED
    assert result.success
    assert result.warnings
    assert await orders.list_all() == []


async def test_draft_for_other_gateway_order_ignored(flow, redirect, drafts, make_draft, orders):
    params = await redirect(stage=False)
    other = await drafts.stage(make_draft(gateway_order_id="order_other"))
    params = params.model_copy(update={"draft_token": other.token})

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.ALREADY_HANDLED
    assert await orders.list_all() == []


@pytest.mark.parametrize("status, reason", [
    (None, ConfirmationReason.CANCELLED),
    ("cancelled", ConfirmationReason.CANCELLED),
    ("failed", ConfirmationReason.MISSING_INFORMATION),
])
async def test_incomplete_redirect(flow, gateway, status, reason):
    result = await flow.confirm(RedirectParams(razorpay_payment_id="pay_1", status=status))

    assert result.reason == reason
    assert not result.success
    assert gateway.fetch_calls == []


async def test_order_store_failure_keeps_draft(verifier, drafts, redirect):
    class BrokenRepository(InMemoryOrderRepository):
        async def create(self, order):
            raise RuntimeError("disk full")

    flow = ClientConfirmationFlow(verifier, OrderReconciler(BrokenRepository()), drafts)
    params = await redirect()

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.ORDER_CREATION_FAILED
    assert "pay_1" in result.message
    assert not result.draft_cleared
    assert await drafts.peek(params.draft_token) is not None


async def test_order_lookup_failure_keeps_draft(verifier, drafts, redirect):
    class UnreachableRepository(InMemoryOrderRepository):
        async def find_by_payment_key(self, gateway_payment_id=None, gateway_order_id=None):
            raise ConnectionError("order store unreachable")

    flow = ClientConfirmationFlow(verifier, OrderReconciler(UnreachableRepository()), drafts)
    params = await redirect()

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.ORDER_CREATION_FAILED
    assert result.payment_id == "pay_1"
    assert result.payment_status == "captured"
    assert "pay_1" in result.message
    assert await drafts.peek(params.draft_token) is not None


async def test_draft_store_failure_reports_payment_id(verifier, reconciler, redirect, orders):
    class UnreachableDrafts(InMemoryDraftStore):
        async def peek(self, token):
            raise ConnectionError("draft store unreachable")

    flow = ClientConfirmationFlow(verifier, reconciler, UnreachableDrafts(default_ttl_seconds=1800))
    params = await redirect(draft_token="tok_1", stage=False)

    result = await flow.confirm(params)

    assert result.reason == ConfirmationReason.ORDER_CREATION_FAILED
    assert result.payment_id == "pay_1"
    assert "pay_1" in result.message
    assert await orders.list_all() == []


async def test_draft_discard_failure_is_a_warning(verifier, reconciler, make_draft, redirect, orders):
    class StickyDrafts(InMemoryDraftStore):
        async def discard(self, token):
            raise ConnectionError("draft store unreachable")

    drafts = StickyDrafts(default_ttl_seconds=1800)
    token = (await drafts.stage(make_draft(gateway_order_id="order_1"))).token
    flow = ClientConfirmationFlow(verifier, reconciler, drafts)

    result = await flow.confirm(await redirect(stage=False, draft_token=token))

    assert result.reason == ConfirmationReason.CONFIRMED
    assert not result.draft_cleared
    assert result.warnings == ["Checkout details could not be cleared"]
    assert len(await orders.list_all()) == 1
