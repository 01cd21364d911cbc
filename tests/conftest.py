# tests/conftest.py
import os
import tempfile
from decimal import Decimal
from unittest.mock import MagicMock

from tests.helpers import MERCHANT_ID, MERCHANT_SECRET, fixed_clock

# konfiguracja przed pierwszym importem pharmorder (engine powstaje przy imporcie)
_TMP_DIR = tempfile.mkdtemp(prefix="pharmorder-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["CELERY_ALWAYS_EAGER"] = "true"
os.environ["PAYHERE_MERCHANT_ID"] = MERCHANT_ID
os.environ["PAYHERE_SECRET"] = MERCHANT_SECRET
os.environ["PAYHERE_CURRENCY"] = "LKR"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["DISCOUNT_EMPTY_SCOPE_POLICY"] = "zero"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import pharmorder.data.models  # noqa: E402,F401
from pharmorder.api import create_app  # noqa: E402
from pharmorder.api.deps import get_auditor, get_notifier, get_settings_cache  # noqa: E402
from pharmorder.data.database import Base, SessionLocal, engine  # noqa: E402
from pharmorder.data.models import (  # noqa: E402
    AddressModel,
    CartItemModel,
    CartModel,
    DiscountModel,
    DoctorModel,
    ProductModel,
    UserModel,
)
from pharmorder.services.order_service import OrderService  # noqa: E402
from pharmorder.services.pricing_service import PricingService  # noqa: E402
from pharmorder.utils.settings_cache import SettingsCache  # noqa: E402


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def auditor():
    return MagicMock()


@pytest.fixture
def settings_cache():
    return SettingsCache(SessionLocal, ttl_seconds=300)


@pytest.fixture
def client(notifier, auditor, settings_cache):
    app = create_app()
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_auditor] = lambda: auditor
    app.dependency_overrides[get_settings_cache] = lambda: settings_cache
    with TestClient(app) as c:
        yield c


# factories
@pytest.fixture
def make_user(db):
    def _make(first_name="Nimal", last_name="Perera", email="nimal@example.com", phone="0771234567"):
        user = UserModel(first_name=first_name, last_name=last_name, email=email, phone=phone)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_doctor(db):
    def _make(user, credit_limit="1000.00", current_credit="0.00", is_verified=True, payment_terms=None):
        doctor = DoctorModel(
            user_id=user.id,
            license_number="SLMC-1234",
            hospital_clinic="City Clinic",
            is_verified=is_verified,
            credit_limit=Decimal(credit_limit),
            current_credit=Decimal(current_credit),
            payment_terms=payment_terms,
        )
        db.add(doctor)
        db.commit()
        return doctor

    return _make


@pytest.fixture
def make_address(db):
    def _make(user, city="Colombo", is_default=True):
        address = AddressModel(
            user_id=user.id,
            label="Clinic",
            contact_name=user.full_name,
            contact_phone="0771234567",
            address_line1="12 Galle Road",
            city=city,
            country="Sri Lanka",
            is_default=is_default,
        )
        db.add(address)
        db.commit()
        return address

    return _make


_sku_counter = {"n": 0}


@pytest.fixture
def make_product(db):
    def _make(
        name="Paracetamol 500mg",
        price="100.00",
        stock=10,
        reserved=0,
        manufacturer="Acme Pharma",
        tax_percentage=None,
        track_inventory=True,
        allow_backorder=False,
        low_stock_threshold=2,
        **extra,
    ):
        _sku_counter["n"] += 1
        product = ProductModel(
            name=name,
            sku=f"SKU-{_sku_counter['n']:05d}",
            generic_name=name.split()[0],
            manufacturer=manufacturer,
            batch_number="B-001",
            selling_price=Decimal(price),
            cost_price=Decimal(price) / 2,
            tax_enabled=tax_percentage is not None,
            tax_percentage=Decimal(tax_percentage or "0"),
            stock_quantity=stock,
            reserved_quantity=reserved,
            low_stock_threshold=low_stock_threshold,
            track_inventory=track_inventory,
            allow_backorder=allow_backorder,
            is_active=True,
            **extra,
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_discount(db):
    def _make(code="SAVE10", type="percentage", value="10", **extra):
        extra.setdefault("is_active", True)
        extra.setdefault("is_deleted", False)
        extra.setdefault("used_count", 0)
        discount = DiscountModel(
            name=f"Discount {code}",
            code=code,
            type=type,
            value=Decimal(value),
            **extra,
        )
        db.add(discount)
        db.commit()
        return discount

    return _make


@pytest.fixture
def make_cart(db):
    """Aktywny koszyk z pozycjami [(product, qty), ...] wycenionymi jak w CartService."""

    def _make(user, lines, shipping_address=None, billing_address=None, discount=None, shipping_amount="0.00"):
        pricing = PricingService(db)
        cart = CartModel(
            user_id=user.id,
            status="active",
            version=1,
            shipping_address_id=shipping_address.id if shipping_address else None,
            billing_address_id=billing_address.id if billing_address else None,
            discount_id=discount.id if discount else None,
            coupon_code=discount.code if discount else None,
            shipping_amount=Decimal(shipping_amount),
        )
        for product, quantity in lines:
            price = pricing.calculate_line(product, quantity)
            cart.items.append(
                CartItemModel(
                    product_id=product.id,
                    product_name=product.name,
                    product_sku=product.sku,
                    quantity=quantity,
                    unit_price=price.unit_price,
                    original_price=price.original_price,
                    tax_percentage=price.tax_percentage,
                    tax_amount=price.tax_amount,
                    subtotal=price.subtotal,
                    total=price.total,
                )
            )
        totals = pricing.calculate_totals(cart.items, Decimal("0"), Decimal(shipping_amount))
        cart.subtotal = totals.subtotal
        cart.tax_amount = totals.tax_amount
        cart.total = totals.total
        db.add(cart)
        db.commit()
        return cart

    return _make


@pytest.fixture
def order_service(db, notifier, auditor, settings_cache):
    return OrderService(db, notifier=notifier, auditor=auditor, settings_cache=settings_cache, clock=fixed_clock)


@pytest.fixture
def place_order(make_user, make_address, make_product, make_cart, order_service):
    """Zamówienie pending: p1 x2 po 100, p2 x1 po 50 (razem 250)."""

    def _place(payment_method="cash", user=None, lines=None):
        user = user or make_user()
        address = make_address(user)
        if lines is None:
            p1 = make_product(name="Paracetamol 500mg", price="100.00", stock=10)
            p2 = make_product(name="Amoxicillin 250mg", price="50.00", stock=5)
            lines = [(p1, 2), (p2, 1)]
        make_cart(user, lines, shipping_address=address)
        return order_service.create_order(user.id, payment_method).order

    return _place
