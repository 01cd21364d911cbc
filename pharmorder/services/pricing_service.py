# pharmorder/services/pricing_service.py
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmorder.data.models.discount import DiscountModel
from pharmorder.data.models.doctor import DoctorModel
from pharmorder.data.models.product import ProductModel
from pharmorder.utils.clock import Clock, as_utc, utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import ZERO, money
from pharmorder.utils.settings import DEFAULT_PAYMENT_TERMS_DAYS, DISCOUNT_EMPTY_SCOPE_POLICY
from pharmorder.utils.settings_cache import SettingsCache

logger = get_logger(__name__)

HUNDRED = Decimal("100")
NO_ELIGIBLE_ITEMS = "No items in cart are eligible for this discount"


@dataclass
class DiscountResult:
    valid: bool
    discount_amount: Decimal = ZERO
    reason: str | None = None
    discount: DiscountModel | None = None


@dataclass
class CreditDecision:
    eligible: bool
    due_date: date | None = None
    reason: str | None = None


@dataclass
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total: Decimal


@dataclass
class LinePrice:
    unit_price: Decimal
    original_price: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    total: Decimal


@dataclass
class DiscountLine:
    """Pozycja widziana przez reguły zakresu rabatu."""

    product_id: int
    subtotal: Decimal
    category_id: int | None = None
    agency_id: int | None = None
    brand_id: int | None = None
    manufacturer: str | None = None
    batch_number: str | None = None


class PricingService:
    """
    Ceny, podatek, rabaty i kredyt kupiecki.
    Tylko obliczenia - nic nie zapisuje (poza odczytem rabatu/produktów).
    """

    def __init__(
        self,
        db: Session,
        settings_cache: SettingsCache | None = None,
        clock: Clock = utc_now,
        empty_scope_policy: str = DISCOUNT_EMPTY_SCOPE_POLICY,
    ):
        self.db = db
        self.settings = settings_cache
        self.clock = clock
        self.empty_scope_policy = empty_scope_policy

    # lines / totals
    def calculate_line(self, product: ProductModel, quantity: int) -> LinePrice:
        unit_price = money(product.selling_price)
        tax_percentage = Decimal(str(product.tax_percentage or 0)) if product.tax_enabled else Decimal("0")

        subtotal = money(unit_price * quantity)
        tax_amount = money(subtotal * tax_percentage / HUNDRED)

        return LinePrice(
            unit_price=unit_price,
            original_price=unit_price,
            tax_percentage=tax_percentage,
            tax_amount=tax_amount,
            subtotal=subtotal,
            total=money(subtotal + tax_amount),
        )

    def calculate_totals(self, items, discount_amount=ZERO, shipping_amount=ZERO) -> Totals:
        subtotal = money(sum((money(i.subtotal) for i in items), ZERO))
        tax_amount = money(sum((money(i.tax_amount) for i in items), ZERO))
        discount_amount = money(discount_amount)
        shipping_amount = money(shipping_amount)

        total = subtotal + tax_amount - discount_amount + shipping_amount
        return Totals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            shipping_amount=shipping_amount,
            total=max(money(total), ZERO),
        )

    def shipping_for(self, subtotal) -> Decimal:
        charge = self._setting_decimal("default_shipping_charge", "0")
        threshold = self._setting("free_shipping_threshold")

        if threshold is not None:
            try:
                if money(subtotal) >= money(threshold):
                    return ZERO
            except ArithmeticError:
                logger.warning(f"Setting free_shipping_threshold is not a number: {threshold}")
        return charge

    # discounts
    def discount_lines(self, pairs: Iterable[Tuple[int, Decimal]]) -> List[DiscountLine]:
        """(product_id, subtotal) -> DiscountLine z atrybutami produktu z bazy."""
        pairs = list(pairs)
        ids = {product_id for product_id, _ in pairs}
        products = {}
        if ids:
            rows = self.db.execute(select(ProductModel).where(ProductModel.id.in_(ids))).scalars().all()
            products = {p.id: p for p in rows}

        lines = []
        for product_id, subtotal in pairs:
            product = products.get(product_id)
            lines.append(
                DiscountLine(
                    product_id=product_id,
                    subtotal=money(subtotal),
                    category_id=product.category_id if product else None,
                    agency_id=product.agency_id if product else None,
                    brand_id=product.brand_id if product else None,
                    manufacturer=product.manufacturer if product else None,
                    batch_number=product.batch_number if product else None,
                )
            )
        return lines

    def find_discount(self, code: str, lock: bool = False) -> DiscountModel | None:
        stmt = select(DiscountModel).where(func.upper(DiscountModel.code) == code.strip().upper())
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def validate_code(
        self,
        code: str,
        cart_total,
        items: List[DiscountLine],
        shipping_amount=ZERO,
        discount: DiscountModel | None = None,
    ) -> DiscountResult:
        if discount is None:
            discount = self.find_discount(code)

        if not discount or discount.is_deleted:
            return DiscountResult(valid=False, reason="Invalid discount code")

        return self.evaluate_discount(discount, cart_total, items, shipping_amount)

    def evaluate_discount(
        self,
        discount: DiscountModel,
        cart_total,
        items: List[DiscountLine],
        shipping_amount=ZERO,
    ) -> DiscountResult:
        cart_total = money(cart_total)
        now = self.clock()

        if not discount.is_active or discount.is_deleted:
            return DiscountResult(valid=False, reason="Discount is not active")

        start = as_utc(discount.start_date)
        end = as_utc(discount.end_date)
        if start is not None and now < start:
            return DiscountResult(valid=False, reason="Discount is not yet valid")
        if end is not None and now > end:
            return DiscountResult(valid=False, reason="Discount has expired")

        if discount.usage_limit is not None and (discount.used_count or 0) >= discount.usage_limit:
            return DiscountResult(valid=False, reason="Discount usage limit reached")

        if discount.min_order_amount is not None and cart_total < money(discount.min_order_amount):
            return DiscountResult(
                valid=False,
                reason=f"Minimum order amount of {money(discount.min_order_amount)} required",
            )

        eligible = [line for line in items if self._in_scope(discount, line)]
        if items:
            base = money(sum((line.subtotal for line in eligible), ZERO))
        else:
            base = cart_total

        if discount.is_scoped and not eligible:
            if self.empty_scope_policy == "reject":
                return DiscountResult(valid=False, reason=NO_ELIGIBLE_ITEMS, discount=discount)
            logger.info(f"Discount {discount.code} has no eligible items, amount 0")
            return DiscountResult(valid=True, discount_amount=ZERO, discount=discount)

        value = Decimal(str(discount.value or 0))
        if discount.type == "percentage":
            amount = money(base * value / HUNDRED)
            if discount.max_discount_amount is not None:
                amount = min(amount, money(discount.max_discount_amount))
        elif discount.type == "fixed_amount":
            amount = min(money(value), base)
        elif discount.type == "free_shipping":
            amount = money(shipping_amount)
        else:
            logger.warning(f"Unknown discount type {discount.type} for {discount.code}")
            return DiscountResult(valid=False, reason="Invalid discount code")

        return DiscountResult(valid=True, discount_amount=max(amount, ZERO), discount=discount)

    @staticmethod
    def _in_scope(discount: DiscountModel, line: DiscountLine) -> bool:
        if discount.excluded_product_ids and line.product_id in discount.excluded_product_ids:
            return False

        # produkt lub kategoria z listy wystarczy
        if discount.product_ids or discount.category_ids:
            by_product = bool(discount.product_ids) and line.product_id in discount.product_ids
            by_category = bool(discount.category_ids) and line.category_id in discount.category_ids
            if not (by_product or by_category):
                return False

        if discount.agency_ids and line.agency_id not in discount.agency_ids:
            return False
        if discount.brand_ids and line.brand_id not in discount.brand_ids:
            return False
        if discount.manufacturers:
            allowed = {m.strip().lower() for m in discount.manufacturers if m}
            if (line.manufacturer or "").strip().lower() not in allowed:
                return False
        if discount.batch_numbers and line.batch_number not in discount.batch_numbers:
            return False
        return True

    # credit
    def evaluate_credit(self, doctor: DoctorModel | None, order_total, now: datetime | None = None) -> CreditDecision:
        if doctor is None:
            return CreditDecision(eligible=False, reason="No doctor profile")

        if not doctor.is_verified:
            return CreditDecision(eligible=False, reason="Doctor account is not verified")

        available = money(doctor.credit_limit) - money(doctor.current_credit)
        if money(order_total) > available:
            return CreditDecision(
                eligible=False,
                reason=f"Insufficient credit limit (available {available})",
            )

        terms = doctor.payment_terms
        if not terms:
            terms = self._setting_int("credit_payment_terms_days", DEFAULT_PAYMENT_TERMS_DAYS)

        now = now or self.clock()
        return CreditDecision(eligible=True, due_date=(now + timedelta(days=terms)).date())

    # settings
    def _setting(self, key: str, default=None):
        if self.settings is None:
            return default
        return self.settings.get(key, default)

    def _setting_int(self, key: str, default: int) -> int:
        if self.settings is None:
            return default
        return self.settings.get_int(key, default)

    def _setting_decimal(self, key: str, default: str) -> Decimal:
        if self.settings is None:
            return money(default)
        return self.settings.get_decimal(key, default)
