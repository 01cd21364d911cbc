# tests/unit/test_order_service.py
import re
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from pharmorder.data.models import CartModel, OrderModel, OrderStatusHistoryModel
from pharmorder.domain.errors import (
    ConcurrencyConflict,
    EmptyCart,
    InsufficientStock,
    InvalidDiscount,
    MissingAddress,
    NotFoundError,
)
from tests.helpers import FIXED_NOW


def test_create_order_from_cart(db, place_order, notifier, auditor):
    order = place_order()

    assert order.order_number == "ORD2405170001"
    assert order.subtotal == Decimal("250.00")
    assert order.total == Decimal("250.00")
    assert order.due_amount == Decimal("250.00")
    assert order.paid_amount == Decimal("0.00")
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.item_count == 2
    assert order.total_quantity == 3
    assert order.shipping_address["city"] == "Colombo"
    assert order.billing_address == order.shipping_address

    assert [(i.product_name, i.quantity, i.stock_state) for i in order.items] == [
        ("Paracetamol 500mg", 2, "reserved"),
        ("Amoxicillin 250mg", 1, "reserved"),
    ]

    history = db.query(OrderStatusHistoryModel).filter_by(order_id=order.id).all()
    assert [(h.previous_status, h.new_status, h.notes) for h in history] == [(None, "pending", "Order placed")]

    cart = db.query(CartModel).filter_by(user_id=order.user_id).one()
    assert cart.status == "converted"

    events = [c.args[0] for c in notifier.notify.call_args_list]
    assert events == ["order_confirmation", "admin_new_order"]
    auditor.log.assert_called_once()


def test_create_order_reserves_stock(db, place_order, make_product):
    p1 = make_product(name="Cetirizine 10mg", price="100.00", stock=10)
    p2 = make_product(name="Omeprazole 20mg", price="50.00", stock=5)

    place_order(lines=[(p1, 2), (p2, 1)])

    db.refresh(p1)
    db.refresh(p2)
    assert (p1.stock_quantity, p1.reserved_quantity, p1.available_quantity) == (10, 2, 8)
    assert (p2.stock_quantity, p2.reserved_quantity, p2.available_quantity) == (5, 1, 4)


def test_order_numbers_are_sequential_per_day(place_order, make_user):
    first = place_order(user=make_user(email="a@example.com"))
    second = place_order(user=make_user(email="b@example.com"))

    assert first.order_number == "ORD2405170001"
    assert second.order_number == "ORD2405170002"
    assert re.fullmatch(r"ORD\d{6}\d{4}", second.order_number)


def test_insufficient_stock_creates_nothing(db, make_user, make_address, make_product, make_cart, order_service):
    user = make_user()
    plenty = make_product(name="Paracetamol 500mg", stock=50)
    scarce = make_product(name="Insulin Glargine", stock=3)
    make_cart(user, [(plenty, 1), (scarce, 5)], shipping_address=make_address(user))

    with pytest.raises(InsufficientStock) as exc:
        order_service.create_order(user.id, "cash")

    assert "Insulin Glargine" in str(exc.value)
    assert db.query(OrderModel).count() == 0
    db.refresh(plenty)
    db.refresh(scarce)
    assert plenty.reserved_quantity == 0
    assert scarce.reserved_quantity == 0
    assert db.query(CartModel).filter_by(user_id=user.id).one().status == "active"


def test_empty_or_missing_cart(make_user, make_address, make_cart, order_service):
    user = make_user()

    with pytest.raises(EmptyCart):
        order_service.create_order(user.id, "cash")

    make_cart(user, [], shipping_address=make_address(user))
    with pytest.raises(EmptyCart):
        order_service.create_order(user.id, "cash")


def test_missing_address(make_user, make_product, make_cart, order_service):
    user = make_user()
    make_cart(user, [(make_product(), 1)])

    with pytest.raises(MissingAddress):
        order_service.create_order(user.id, "cash")


def test_address_of_another_customer_is_rejected(make_user, make_address, make_product, make_cart, order_service):
    user = make_user(email="a@example.com")
    stranger = make_user(email="b@example.com")
    make_cart(user, [(make_product(), 1)], shipping_address=make_address(user))

    with pytest.raises(MissingAddress):
        order_service.create_order(user.id, "cash", billing_address_id=make_address(stranger).id)


def test_credit_order_increments_doctor_credit(db, make_user, make_doctor, make_address, make_product, make_cart, order_service):
    user = make_user()
    doctor = make_doctor(user, credit_limit="1000", current_credit="200")
    make_cart(user, [(make_product(price="500.00"), 1)], shipping_address=make_address(user))

    order = order_service.create_order(user.id, "credit", use_credit=True).order

    assert order.is_credit is True
    assert order.payment_status == "credit"
    assert order.doctor_id == doctor.id
    assert order.credit_due_date == (FIXED_NOW + timedelta(days=30)).date()
    db.refresh(doctor)
    assert doctor.current_credit == Decimal("700.00")


def test_ineligible_credit_falls_back_to_regular_order(db, make_user, make_doctor, make_address, make_product, make_cart, order_service):
    user = make_user()
    doctor = make_doctor(user, credit_limit="1000", current_credit="800")
    make_cart(user, [(make_product(price="500.00"), 1)], shipping_address=make_address(user))

    order = order_service.create_order(user.id, "cash", use_credit=True).order

    assert order.is_credit is False
    assert order.payment_status == "pending"
    db.refresh(doctor)
    assert doctor.current_credit == Decimal("800.00")


def test_discount_is_revalidated_and_counted(db, make_user, make_address, make_product, make_cart, make_discount, order_service):
    user = make_user()
    discount = make_discount(code="SAVE10", type="percentage", value="10")
    make_cart(user, [(make_product(price="100.00"), 2)], shipping_address=make_address(user), discount=discount)

    order = order_service.create_order(user.id, "cash").order

    assert order.discount_amount == Decimal("20.00")
    assert order.total == Decimal("180.00")
    assert order.coupon_code == "SAVE10"
    db.refresh(discount)
    assert discount.used_count == 1


def test_expired_discount_aborts_order(db, make_user, make_address, make_product, make_cart, make_discount, order_service):
    user = make_user()
    discount = make_discount(code="OLD", end_date=FIXED_NOW - timedelta(days=1))
    product = make_product(stock=10)
    make_cart(user, [(product, 2)], shipping_address=make_address(user), discount=discount)

    with pytest.raises(InvalidDiscount):
        order_service.create_order(user.id, "cash")

    assert db.query(OrderModel).count() == 0
    db.refresh(product)
    assert product.reserved_quantity == 0


def test_payhere_order_returns_checkout(place_order, order_service):
    order = place_order(payment_method="payhere")

    checkout = order_service.get_payment_data(order.id, order.user_id)

    assert checkout["order_id"] == order.order_number
    assert checkout["amount"] == "250.00"
    assert checkout["currency"] == "LKR"
    assert len(checkout["hash"]) == 32


def test_create_order_result_has_checkout_only_for_payhere(make_user, make_address, make_product, make_cart, order_service):
    user = make_user()
    make_cart(user, [(make_product(), 1)], shipping_address=make_address(user))

    result = order_service.create_order(user.id, "payhere")

    assert result.checkout["order_id"] == result.order.order_number
    assert result.checkout["first_name"] == "Nimal"


def test_order_number_conflict_is_retried_then_surfaced(make_user, make_address, make_product, make_cart, order_service):
    user = make_user()
    make_cart(user, [(make_product(), 1)], shipping_address=make_address(user))
    conflict = IntegrityError("INSERT INTO orders", {}, Exception("UNIQUE constraint failed: orders.order_number"))

    with patch.object(order_service, "_next_order_number", side_effect=conflict) as numbering:
        with pytest.raises(ConcurrencyConflict):
            order_service.create_order(user.id, "cash")

    assert numbering.call_count == 2


def test_get_order_by_id_or_number_with_ownership(place_order, order_service, make_user):
    order = place_order()
    other = make_user(email="other@example.com")

    assert order_service.get_order(order.id, order.user_id).id == order.id
    assert order_service.get_order(order.order_number, order.user_id).id == order.id
    assert order_service.get_order(order.id, other.id, is_admin=True).id == order.id

    with pytest.raises(PermissionError):
        order_service.get_order(order.id, other.id)
    with pytest.raises(NotFoundError):
        order_service.get_order("ORD0000000000", order.user_id)


def test_list_orders_paginates(place_order, make_user, order_service):
    user = make_user()
    place_order(user=user)
    place_order(user=user)

    page = order_service.list_orders(user.id, page=1, limit=1)

    assert page["total"] == 2
    assert page["pages"] == 2
    assert len(page["items"]) == 1
    assert order_service.list_orders(user.id, status="cancelled")["total"] == 0


def test_payment_data_rejected_for_paid_orders(db, place_order, order_service):
    order = place_order()
    order.payment_status = "paid"
    order.paid_amount = order.total
    order.due_amount = Decimal("0")
    db.commit()

    with pytest.raises(NotFoundError):
        order_service.get_payment_data(order.id, order.user_id)


def test_notification_failure_does_not_fail_order(place_order, notifier, auditor):
    notifier.notify.side_effect = RuntimeError("broker down")
    auditor.log.side_effect = RuntimeError("broker down")

    order = place_order()

    assert order.id is not None
    assert order.status == "pending"
