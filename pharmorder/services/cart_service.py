# pharmorder/services/cart_service.py
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmorder.data.models.address import AddressModel
from pharmorder.data.models.cart import CartModel
from pharmorder.data.models.cart_item import CartItemModel
from pharmorder.data.models.discount import DiscountModel
from pharmorder.data.models.product import ProductModel
from pharmorder.domain.errors import (
    BusinessRuleError,
    ConcurrencyConflict,
    EmptyCart,
    InsufficientStock,
    InvalidDiscount,
    NotFoundError,
)
from pharmorder.repos.cart_repo import CartRepo
from pharmorder.services.inventory_service import InventoryService
from pharmorder.services.pricing_service import PricingService
from pharmorder.utils.clock import Clock, utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import ZERO
from pharmorder.utils.settings import CART_TTL_SECONDS

logger = get_logger(__name__)


class CartService:
    """
    Prosta implementacja cqrs dla aktywnego koszyka klienta
    commands (create, add, update, remove, clear, addresses, coupon) modyfikują stan
    query (get) tylko odczyt
    """

    def __init__(self, db: Session, settings_cache=None, clock: Clock = utc_now):
        self.db = db
        self.repo = CartRepo(db)
        self.inventory = InventoryService(db)
        self.pricing = PricingService(db, settings_cache=settings_cache, clock=clock)
        self.clock = clock

    # query - odczyt
    def get_active_cart(self, user_id: int) -> Dict[str, Any] | None:
        cart = self.repo.get_active_cart_by_user(user_id)
        if not cart:
            return None
        return self._to_dict(cart)

    # commands
    def create_cart(self, user_id: int) -> Dict[str, Any]:
        existing = self.repo.get_active_cart_by_user(user_id)
        if existing:
            logger.info(f"User {user_id} already has active cart {existing.id}")
            return self._to_dict(existing)

        try:
            cart = self._new_cart(user_id)
            self.repo.commit()
        except IntegrityError:
            # równoległe utworzenie - unikalny indeks na aktywny koszyk
            self.repo.rollback()
            existing = self.repo.get_active_cart_by_user(user_id)
            if not existing:
                raise
            return self._to_dict(existing)

        logger.info(f"Created cart {cart.id} for user {user_id}")
        return self._to_dict(cart)

    def add_product(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise BusinessRuleError("Quantity must be greater than 0")

        try:
            cart = self.repo.get_active_cart_by_user(user_id) or self._new_cart(user_id)

            product = self.db.get(ProductModel, product_id)
            if not product or not product.is_active:
                raise NotFoundError("Product not found")

            item = self.repo.get_cart_item(cart.id, product_id)
            new_quantity = quantity + (item.quantity if item else 0)

            check = self.inventory.check_stock(product_id, new_quantity)
            if not check.available:
                raise InsufficientStock(product.name, check.message)

            if item is None:
                logger.info(f"Adding product {product_id} to cart {cart.id}")
                item = CartItemModel(product_id=product.id, quantity=new_quantity)
                self.repo.add_cart_item(cart, item)
            else:
                logger.info(
                    f"Product {product_id} already in cart {cart.id}, quantity "
                    f"{item.quantity} -> {new_quantity}"
                )
                item.quantity = new_quantity

            self._snapshot(item, product, new_quantity)
            self._save(cart)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def update_item_quantity(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise BusinessRuleError("Quantity must be greater than 0")

        try:
            cart = self._active_cart(user_id)
            item = self.repo.get_cart_item(cart.id, product_id)
            if not item:
                raise NotFoundError("Product not in cart")

            product = self.db.get(ProductModel, product_id)
            if not product or not product.is_active:
                raise NotFoundError("Product not found")

            check = self.inventory.check_stock(product_id, quantity)
            if not check.available:
                raise InsufficientStock(product.name, check.message)

            logger.info(f"Product {product_id} in cart {cart.id}, quantity {item.quantity} -> {quantity}")
            item.quantity = quantity
            self._snapshot(item, product, quantity)
            self._save(cart)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def remove_product(self, user_id: int, product_id: int) -> Dict[str, Any]:
        try:
            cart = self._active_cart(user_id)
            item = self.repo.get_cart_item(cart.id, product_id)
            if not item:
                raise NotFoundError("Product not in cart")

            logger.info(f"Removing product {product_id} from cart {cart.id}")
            self.repo.delete_cart_item(cart, item)
            self._save(cart)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def clear_cart(self, user_id: int) -> Dict[str, Any]:
        try:
            cart = self._active_cart(user_id)
            logger.info(f"Clearing cart {cart.id} ({len(cart.items)} items)")
            for item in list(cart.items):
                self.repo.delete_cart_item(cart, item)
            # pusty koszyk nie trzyma kuponu
            self._save(cart, discount_id=None, coupon_code=None)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def set_addresses(
        self,
        user_id: int,
        shipping_address_id: int | None,
        billing_address_id: int | None = None,
    ) -> Dict[str, Any]:
        try:
            cart = self._active_cart(user_id)
            for address_id in (shipping_address_id, billing_address_id):
                if address_id is None:
                    continue
                address = self.db.get(AddressModel, address_id)
                if not address or address.user_id != user_id:
                    raise NotFoundError("Address not found")

            self._save(
                cart,
                shipping_address_id=shipping_address_id,
                billing_address_id=billing_address_id,
            )
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def apply_coupon(self, user_id: int, code: str) -> Dict[str, Any]:
        try:
            cart = self._active_cart(user_id)
            if not cart.items:
                raise EmptyCart()

            subtotal = sum((i.subtotal for i in cart.items), ZERO)
            result = self.pricing.validate_code(
                code,
                subtotal,
                self.pricing.discount_lines((i.product_id, i.subtotal) for i in cart.items),
                self.pricing.shipping_for(subtotal),
            )
            if not result.valid:
                raise InvalidDiscount(result.reason or "Invalid discount code")

            logger.info(f"Coupon {code.upper()} applied to cart {cart.id}")
            self._save(cart, discount_id=result.discount.id, coupon_code=result.discount.code)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    def remove_coupon(self, user_id: int) -> Dict[str, Any]:
        try:
            cart = self._active_cart(user_id)
            self._save(cart, discount_id=None, coupon_code=None)
        except Exception:
            self.repo.rollback()
            raise

        return self.get_active_cart(user_id)

    # helpers
    def _active_cart(self, user_id: int) -> CartModel:
        cart = self.repo.get_active_cart_by_user(user_id)
        if not cart:
            raise NotFoundError("Active cart not found")
        return cart

    def _new_cart(self, user_id: int) -> CartModel:
        return self.repo.create_cart(
            CartModel(
                user_id=user_id,
                status="active",
                version=1,
                expires_at=self.clock() + timedelta(seconds=CART_TTL_SECONDS),
            )
        )

    def _snapshot(self, item: CartItemModel, product: ProductModel, quantity: int) -> None:
        # snapshot ceny z chwili dodania lub zmiany ilości
        price = self.pricing.calculate_line(product, quantity)
        item.product_name = product.name
        item.product_sku = product.sku
        item.unit_price = price.unit_price
        item.original_price = price.original_price
        item.tax_percentage = price.tax_percentage
        item.tax_amount = price.tax_amount
        item.subtotal = price.subtotal
        item.total = price.total

    def _save(self, cart: CartModel, **changes) -> None:
        """Przeliczenie sum + optimistic locking na wersji, potem commit."""
        discount_id = changes.get("discount_id", cart.discount_id)
        coupon_code = changes.get("coupon_code", cart.coupon_code)

        subtotal = sum((i.subtotal for i in cart.items), ZERO)
        shipping_amount = self.pricing.shipping_for(subtotal) if cart.items else ZERO

        discount_amount = ZERO
        if discount_id:
            discount = self.db.get(DiscountModel, discount_id)
            result = None
            if discount:
                result = self.pricing.evaluate_discount(
                    discount,
                    subtotal,
                    self.pricing.discount_lines((i.product_id, i.subtotal) for i in cart.items),
                    shipping_amount,
                )
            if result is not None and result.valid:
                discount_amount = result.discount_amount
            else:
                logger.warning(f"Coupon {coupon_code} no longer valid for cart {cart.id}, removing")
                discount_id, coupon_code = None, None

        totals = self.pricing.calculate_totals(cart.items, discount_amount, shipping_amount)

        new_data = {
            "version": cart.version + 1,
            "expires_at": self.clock() + timedelta(seconds=CART_TTL_SECONDS),
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "discount_amount": totals.discount_amount,
            "shipping_amount": totals.shipping_amount,
            "total": totals.total,
            "discount_id": discount_id,
            "coupon_code": coupon_code,
        }
        for key in ("shipping_address_id", "billing_address_id"):
            if key in changes:
                new_data[key] = changes[key]

        # UPDATE carts SET ... WHERE id = :id AND version = :old
        rowcount = self.repo.update_cart_version(cart.id, cart.version, new_data)
        if rowcount == 0:
            raise ConcurrencyConflict("Cart was modified by another operation, please retry")

        self.repo.commit()
        # UPDATE poza ORM - obiekt w sesji trzeba przeładować
        self.db.expire(cart)

        logger.info(f"Cart {cart.id} saved, version {new_data['version']}")

    @staticmethod
    def _to_dict(cart: CartModel) -> Dict[str, Any]:
        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "status": cart.status,
            "version": cart.version,
            "items": [
                {
                    "product_id": i.product_id,
                    "product_name": i.product_name,
                    "product_sku": i.product_sku,
                    "quantity": i.quantity,
                    "unit_price": i.unit_price,
                    "tax_amount": i.tax_amount,
                    "subtotal": i.subtotal,
                    "total": i.total,
                }
                for i in cart.items
            ],
            "subtotal": cart.subtotal,
            "tax_amount": cart.tax_amount,
            "discount_amount": cart.discount_amount,
            "shipping_amount": cart.shipping_amount,
            "total": cart.total,
            "coupon_code": cart.coupon_code,
            "shipping_address_id": cart.shipping_address_id,
            "billing_address_id": cart.billing_address_id,
            "expires_at": cart.expires_at,
        }
