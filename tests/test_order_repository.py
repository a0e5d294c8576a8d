import re

import pytest

from storefront.errors import DuplicateOrderError, OrderNotFoundError
from storefront.schemas.orders import OrderStatus, PaymentInfo


def payment(payment_id="pay_1", order_id="order_1"):
    return PaymentInfo(gateway_payment_id=payment_id, gateway_order_id=order_id,
                       payment_method="upi", payment_status="captured")


async def test_create_assigns_id_and_order_number(orders, make_draft):
    stored = await orders.create(make_draft().to_order(payment(), OrderStatus.PROCESSING))

    assert stored.id
    assert re.fullmatch(r"ORD-\d{8}-\d{6}", stored.order_number)
    assert stored.status == OrderStatus.PROCESSING
    assert await orders.get(stored.id) == stored


async def test_duplicate_payment_id_rejected(orders, make_draft):
    first = await orders.create(make_draft().to_order(payment(), OrderStatus.PROCESSING))

    with pytest.raises(DuplicateOrderError) as exc_info:
        await orders.create(make_draft().to_order(payment(order_id="order_2"), OrderStatus.PROCESSING))

    assert exc_info.value.existing.id == first.id
    assert len(await orders.list_all()) == 1


async def test_duplicate_gateway_order_id_rejected(orders, make_draft):
    await orders.create(make_draft().to_order(payment(), OrderStatus.PROCESSING))

    with pytest.raises(DuplicateOrderError):
        await orders.create(make_draft().to_order(payment(payment_id="pay_2"), OrderStatus.PROCESSING))


async def test_find_by_payment_key(orders, make_draft):
    stored = await orders.create(make_draft().to_order(payment(), OrderStatus.PENDING))

    assert (await orders.find_by_payment_key(gateway_payment_id="pay_1")).id == stored.id
    assert (await orders.find_by_payment_key(gateway_order_id="order_1")).id == stored.id
    assert await orders.find_by_payment_key(gateway_payment_id="pay_other") is None
    assert await orders.find_by_payment_key() is None


async def test_get_by_id_or_number(orders, make_draft):
    stored = await orders.create(make_draft().to_order(payment(), OrderStatus.PENDING))

    assert (await orders.get_by_id_or_number(stored.id)).id == stored.id
    assert (await orders.get_by_id_or_number(stored.order_number.lower())).id == stored.id
    assert await orders.get_by_id_or_number("ORD-00000000-000000") is None


async def test_update_status_compare_and_set(orders, make_draft):
    stored = await orders.create(make_draft().to_order(payment(), OrderStatus.PENDING))

    assert await orders.update_status(stored.id, OrderStatus.PROCESSING, from_statuses={OrderStatus.PENDING})
    # Already there
    assert not await orders.update_status(stored.id, OrderStatus.PROCESSING)
    # Guard no longer matches
    assert not await orders.update_status(stored.id, OrderStatus.CANCELLED, from_statuses={OrderStatus.PENDING})

    current = await orders.get(stored.id)
    assert current.status == OrderStatus.PROCESSING
    assert current.updated_at >= stored.updated_at


async def test_update_status_unknown_order(orders):
    with pytest.raises(OrderNotFoundError):
        await orders.update_status("missing", OrderStatus.SHIPPED)


async def test_list_all_returns_every_order(orders, make_draft):
    first = await orders.create(make_draft().to_order(payment("pay_1", "order_1"), OrderStatus.PENDING))
    second = await orders.create(make_draft().to_order(payment("pay_2", "order_2"), OrderStatus.PENDING))

    listed = await orders.list_all()
    assert {o.id for o in listed} == {first.id, second.id}
