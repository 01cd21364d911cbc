# pharmorder/services/order_service.py
from dataclasses import dataclass
from math import ceil
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmorder.data.models.address import AddressModel
from pharmorder.data.models.discount import DiscountModel
from pharmorder.data.models.doctor import DoctorModel
from pharmorder.data.models.order import OrderModel
from pharmorder.data.models.order_item import OrderItemModel
from pharmorder.data.models.order_status_history import OrderStatusHistoryModel
from pharmorder.data.models.product import ProductModel
from pharmorder.data.models.user import UserModel
from pharmorder.domain.errors import (
    ConcurrencyConflict,
    EmptyCart,
    InsufficientStock,
    InvalidDiscount,
    MissingAddress,
    NotFoundError,
)
from pharmorder.domain.order_status import OrderStatus, PaymentStatus, StockState
from pharmorder.repos.cart_repo import CartRepo
from pharmorder.repos.order_repo import OrderRepo
from pharmorder.services.inventory_service import InventoryService
from pharmorder.services.payhere_service import PayHereService
from pharmorder.services.pricing_service import PricingService
from pharmorder.utils.clock import Clock, utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import ZERO, money
from pharmorder.utils.retry import conflict_retry
from pharmorder.utils.settings import ORDER_NUMBER_PREFIX

logger = get_logger(__name__)


@dataclass
class OrderResult:
    order: OrderModel
    checkout: Dict[str, Any] | None = None


class OrderService:
    """
    Serwis odpowiedzialny za domenę zamówień.
    create_order() zamienia aktywny koszyk w zamówienie w jednej transakcji.
    """

    def __init__(
        self,
        db: Session,
        notifier=None,
        auditor=None,
        settings_cache=None,
        payhere_service: PayHereService | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.carts = CartRepo(db)
        self.inventory = InventoryService(db, notifier=notifier)
        self.pricing = PricingService(db, settings_cache=settings_cache, clock=clock)
        self.payhere = payhere_service or PayHereService()
        self.notifier = notifier
        self.auditor = auditor
        self.clock = clock

    # commands
    def create_order(
        self,
        user_id: int,
        payment_method: str,
        shipping_address_id: int | None = None,
        billing_address_id: int | None = None,
        use_credit: bool = False,
        customer_notes: str | None = None,
        ip_address: str | None = None,
    ) -> OrderResult:
        """
        Use Case: zamówienie z aktywnego koszyka.

        1. Weryfikuje koszyk, adresy i stan magazynu
        2. Wycenia pozycje (rabat sprawdzany ponownie, kredyt)
        3. Tworzy zamówienie, rezerwuje towar, zamyka koszyk
        4. Po commicie wysyła powiadomienia (async)
        """
        attempt = conflict_retry()(self._create_order_tx)
        try:
            order = attempt(
                user_id=user_id,
                payment_method=payment_method,
                shipping_address_id=shipping_address_id,
                billing_address_id=billing_address_id,
                use_credit=use_credit,
                customer_notes=customer_notes,
                ip_address=ip_address,
            )
        except IntegrityError:
            logger.error(f"Order creation for user {user_id} failed twice on a unique constraint")
            raise ConcurrencyConflict("Could not allocate order number, please retry")

        self._after_create(order, ip_address)

        checkout = None
        if payment_method == "payhere":
            checkout = self.payhere.prepare_checkout_data(order, order.user)
        return OrderResult(order=order, checkout=checkout)

    def _create_order_tx(
        self,
        user_id: int,
        payment_method: str,
        shipping_address_id: int | None,
        billing_address_id: int | None,
        use_credit: bool,
        customer_notes: str | None,
        ip_address: str | None,
    ) -> OrderModel:
        try:
            cart = self.carts.get_active_cart_by_user(user_id, lock=True)
            if not cart or not cart.items:
                raise EmptyCart()

            shipping_address = self._address(user_id, shipping_address_id or cart.shipping_address_id, "Shipping")
            billing_id = billing_address_id or cart.billing_address_id
            billing_address = self._address(user_id, billing_id, "Billing") if billing_id else shipping_address

            # najpierw sprawdzenie wszystkich pozycji, rezerwacja dopiero potem
            for item in cart.items:
                check = self.inventory.check_stock(item.product_id, item.quantity)
                if not check.available:
                    raise InsufficientStock(item.product_name, check.message)

            products = {}
            lines = []
            for item in cart.items:
                product = self.db.get(ProductModel, item.product_id)
                if not product.is_active:
                    raise InsufficientStock(item.product_name, "Product is no longer available")
                products[item.product_id] = product
                lines.append((item, self.pricing.calculate_line(product, item.quantity)))

            shipping_amount = money(cart.shipping_amount)
            discount, discount_amount = self._revalidate_discount(cart, lines, shipping_amount)
            totals = self.pricing.calculate_totals([price for _, price in lines], discount_amount, shipping_amount)

            now = self.clock()
            doctor = self.db.execute(
                select(DoctorModel)
                .where(DoctorModel.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

            is_credit = False
            credit_due_date = None
            if use_credit:
                decision = self.pricing.evaluate_credit(doctor, totals.total, now)
                if decision.eligible:
                    is_credit = True
                    credit_due_date = decision.due_date
                else:
                    logger.warning(
                        f"Credit not available for user {user_id} ({decision.reason}), placing a regular order"
                    )

            order = self.repo.add(
                OrderModel(
                    order_number=self._next_order_number(now),
                    user_id=user_id,
                    doctor_id=doctor.id if doctor else None,
                    subtotal=totals.subtotal,
                    tax_amount=totals.tax_amount,
                    discount_amount=totals.discount_amount,
                    shipping_amount=totals.shipping_amount,
                    total=totals.total,
                    paid_amount=ZERO,
                    due_amount=totals.total,
                    discount_id=discount.id if discount else None,
                    coupon_code=cart.coupon_code if discount else None,
                    item_count=len(lines),
                    total_quantity=sum(item.quantity for item, _ in lines),
                    status=OrderStatus.PENDING.value,
                    payment_status=(PaymentStatus.CREDIT if is_credit else PaymentStatus.PENDING).value,
                    payment_method=payment_method,
                    is_credit=is_credit,
                    credit_due_date=credit_due_date,
                    shipping_address=shipping_address.snapshot(),
                    billing_address=billing_address.snapshot(),
                    customer_notes=customer_notes,
                    ip_address=ip_address,
                    created_at=now,
                    updated_at=now,
                )
            )

            for item, price in lines:
                product = products[item.product_id]
                order.items.append(
                    OrderItemModel(
                        product_id=product.id,
                        product_name=product.name,
                        product_sku=product.sku,
                        generic_name=product.generic_name,
                        manufacturer=product.manufacturer,
                        batch_number=product.batch_number,
                        expiry_date=product.expiry_date,
                        quantity=item.quantity,
                        unit_price=price.unit_price,
                        original_price=price.original_price,
                        cost_price=product.cost_price,
                        tax_percentage=price.tax_percentage,
                        tax_amount=price.tax_amount,
                        subtotal=price.subtotal,
                        total=price.total,
                        stock_state=StockState.RESERVED.value,
                    )
                )
                self.inventory.reserve_stock(
                    product.id,
                    item.quantity,
                    order.order_number,
                    created_by=user_id,
                )

            if is_credit:
                doctor.current_credit = money(doctor.current_credit) + totals.total

            if discount:
                discount.used_count = (discount.used_count or 0) + 1

            self.repo.add_history(
                OrderStatusHistoryModel(
                    order_id=order.id,
                    previous_status=None,
                    new_status=OrderStatus.PENDING.value,
                    notes="Order placed",
                    changed_by=user_id,
                    ip_address=ip_address,
                    created_at=now,
                )
            )

            cart.status = "converted"
            cart.version = (cart.version or 1) + 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Order {order.order_number} created for user {user_id}, total {order.total}")
        return order

    def _address(self, user_id: int, address_id: int | None, kind: str) -> AddressModel:
        if not address_id:
            raise MissingAddress(f"{kind} address is required")

        address = self.db.get(AddressModel, address_id)
        if not address or address.user_id != user_id:
            raise MissingAddress(f"{kind} address not found")
        return address

    def _revalidate_discount(self, cart, lines, shipping_amount):
        if not cart.discount_id:
            return None, ZERO

        discount = self.db.execute(
            select(DiscountModel)
            .where(DiscountModel.id == cart.discount_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not discount:
            raise InvalidDiscount("Discount is no longer available")

        subtotal = money(sum((price.subtotal for _, price in lines), ZERO))
        result = self.pricing.evaluate_discount(
            discount,
            subtotal,
            self.pricing.discount_lines((item.product_id, price.subtotal) for item, price in lines),
            shipping_amount,
        )
        if not result.valid:
            raise InvalidDiscount(result.reason or "Invalid discount code")
        return discount, result.discount_amount

    def _next_order_number(self, now) -> str:
        day_key = now.strftime("%y%m%d")
        seq = self.repo.next_sequence(day_key)
        return f"{ORDER_NUMBER_PREFIX}{day_key}{seq:04d}"

    def _after_create(self, order: OrderModel, ip_address: str | None) -> None:
        # best effort - zamówienie jest już zapisane
        if self.notifier is not None:
            for event_type in ("order_confirmation", "admin_new_order"):
                try:
                    self.notifier.notify(event_type, order, order.user)
                except Exception:
                    logger.exception(f"Failed to send {event_type} for order {order.order_number}")

        if self.auditor is not None:
            try:
                self.auditor.log(
                    order.user_id,
                    "create",
                    "order",
                    order.id,
                    after={"order_number": order.order_number, "total": order.total, "is_credit": order.is_credit},
                    ip_address=ip_address,
                )
            except Exception:
                logger.exception(f"Failed to write audit log for order {order.order_number}")

    # query
    def get_order(self, order_id_or_number, user_id: int, is_admin: bool = False) -> OrderModel:
        key = str(order_id_or_number)
        if key.isdigit():
            order = self.repo.get_order(int(key))
        else:
            order = self.repo.get_by_number(key)

        if not order:
            raise NotFoundError("Order not found")

        if not is_admin and order.user_id != user_id:
            raise PermissionError("Access denied to this order")

        return order

    def list_orders(self, user_id: int, status: str | None = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(min(limit, 100), 1)
        rows, total = self.repo.list_for_user(user_id, status, page, limit)
        return {
            "items": rows,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": ceil(total / limit) if total else 0,
        }

    def get_payment_data(self, order_id: int, user_id: int) -> Dict[str, Any]:
        """Ponowne otwarcie checkoutu PayHere dla nieopłaconego zamówienia."""
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        if order.user_id != user_id:
            raise PermissionError("Access denied to this order")

        if order.payment_status == PaymentStatus.PAID.value or money(order.due_amount) <= ZERO:
            raise NotFoundError("Order is already paid")

        if order.status == OrderStatus.CANCELLED.value:
            raise NotFoundError("Order is cancelled")

        user = self.db.get(UserModel, user_id)
        return self.payhere.prepare_checkout_data(order, user)
