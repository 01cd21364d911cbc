# pharmorder/services/inventory_service.py
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmorder.data.models.inventory_movement import InventoryMovementModel
from pharmorder.data.models.product import ProductModel
from pharmorder.domain.errors import (
    BusinessRuleError,
    InsufficientStock,
    InventoryStateError,
    NotFoundError,
)
from pharmorder.utils.logging import get_logger

logger = get_logger(__name__)

RESERVATION = "reservation"
FULFILLMENT = "fulfillment"
RELEASE = "release"
RESTOCK = "restock"
ADJUSTMENT = "adjustment"


@dataclass
class StockCheck:
    available: bool
    message: str
    current_stock: int | None = None
    is_backorder: bool = False


class InventoryService:
    """
    Księga magazynowa: stan fizyczny vs zarezerwowany.

    Wszystkie operacje zmieniające stan działają w transakcji wołającego
    (flush, nigdy commit) i są idempotentne dla pary
    (reference_number, product_id) - strażnikiem jest historia ruchów.
    """

    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier

    # query
    def check_stock(self, product_id: int, quantity: int) -> StockCheck:
        product = self.db.get(ProductModel, product_id)

        if not product:
            return StockCheck(available=False, message="Product not found")

        if not product.track_inventory:
            return StockCheck(available=True, message="Inventory not tracked")

        available = product.available_quantity
        if available >= quantity:
            return StockCheck(available=True, message="In stock", current_stock=available)

        if product.allow_backorder:
            return StockCheck(
                available=True,
                message="Available for backorder",
                current_stock=available,
                is_backorder=True,
            )

        return StockCheck(
            available=False,
            message=f"Only {max(available, 0)} available",
            current_stock=available,
        )

    def get_stock_levels(self, product_id: int) -> dict:
        product = self.db.get(ProductModel, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return {
            "product_id": product.id,
            "stock_quantity": product.stock_quantity,
            "reserved_quantity": product.reserved_quantity,
            "available_quantity": product.available_quantity,
            "track_inventory": product.track_inventory,
        }

    def get_movements(self, product_id: int, limit: int = 50):
        return self.db.execute(
            select(InventoryMovementModel)
            .where(InventoryMovementModel.product_id == product_id)
            .order_by(InventoryMovementModel.id.desc())
            .limit(limit)
        ).scalars().all()

    # commands
    def reserve_stock(
        self,
        product_id: int,
        quantity: int,
        reference_number: str,
        created_by: int | None = None,
    ) -> bool:
        product = self._lock_product(product_id)

        if not product.track_inventory:
            return False

        if self._has_movement(product_id, reference_number, RESERVATION):
            logger.warning(f"Stock for product {product_id} already reserved for {reference_number}")
            return False

        # ponowne sprawdzenie pod blokadą - ktoś mógł wykupić ostatnie sztuki
        if product.available_quantity < quantity and not product.allow_backorder:
            raise InsufficientStock(
                product.name, f"Only {max(product.available_quantity, 0)} available"
            )

        reserved_before = product.reserved_quantity
        product.reserved_quantity = reserved_before + quantity

        self._record(
            product,
            RESERVATION,
            quantity_change=0,
            quantity_before=product.stock_quantity,
            reserved_before=reserved_before,
            reference_number=reference_number,
            reason="Stock reserved for order",
            created_by=created_by,
        )
        logger.info(f"Reserved {quantity} of product {product_id} for {reference_number}")
        return True

    def reduce_stock(
        self,
        product_id: int,
        quantity: int,
        source_type: str,
        source_id: int | None,
        reference_number: str,
        created_by: int | None = None,
    ) -> bool:
        product = self._lock_product(product_id)

        if not product.track_inventory:
            return False

        if self._has_movement(product_id, reference_number, FULFILLMENT):
            logger.warning(f"Stock for product {product_id} already deducted for {reference_number}")
            return False

        if self._has_movement(product_id, reference_number, RELEASE):
            raise InventoryStateError(
                f"Reservation of product {product_id} for {reference_number} was already released"
            )

        was_reserved = self._has_movement(product_id, reference_number, RESERVATION)

        stock_before = product.stock_quantity
        reserved_before = product.reserved_quantity
        product.stock_quantity = max(0, stock_before - quantity)
        if was_reserved:
            product.reserved_quantity = max(0, reserved_before - quantity)

        self._record(
            product,
            FULFILLMENT,
            quantity_change=-quantity,
            quantity_before=stock_before,
            reserved_before=reserved_before,
            reference_number=reference_number,
            reference_type=source_type,
            reference_id=source_id,
            reason=f"Stock reduced for {source_type}",
            created_by=created_by,
        )
        logger.info(f"Deducted {quantity} of product {product_id} for {reference_number}")

        if product.stock_quantity <= product.low_stock_threshold:
            self._low_stock_alert(product)
        return True

    def release_reserved_stock(
        self,
        product_id: int,
        quantity: int,
        reference_number: str,
        created_by: int | None = None,
    ) -> bool:
        product = self._lock_product(product_id)

        if not product.track_inventory:
            return False

        if not self._has_movement(product_id, reference_number, RESERVATION):
            logger.warning(f"No reservation of product {product_id} for {reference_number}, nothing to release")
            return False

        if self._has_movement(product_id, reference_number, RELEASE) or self._has_movement(
            product_id, reference_number, FULFILLMENT
        ):
            logger.warning(f"Reservation of product {product_id} for {reference_number} already settled")
            return False

        reserved_before = product.reserved_quantity
        product.reserved_quantity = max(0, reserved_before - quantity)

        self._record(
            product,
            RELEASE,
            quantity_change=0,
            quantity_before=product.stock_quantity,
            reserved_before=reserved_before,
            reference_number=reference_number,
            reason="Reserved stock released",
            created_by=created_by,
        )
        logger.info(f"Released {quantity} of product {product_id} for {reference_number}")
        return True

    def increase_stock(
        self,
        product_id: int,
        quantity: int,
        reference_number: str | None = None,
        reason: str | None = None,
        created_by: int | None = None,
    ) -> ProductModel:
        if quantity <= 0:
            raise BusinessRuleError("Quantity must be greater than 0")

        product = self._lock_product(product_id)

        stock_before = product.stock_quantity
        product.stock_quantity = stock_before + quantity

        self._record(
            product,
            RESTOCK,
            quantity_change=quantity,
            quantity_before=stock_before,
            reserved_before=product.reserved_quantity,
            reference_number=reference_number,
            reference_type="restock",
            reason=reason or "Stock replenished",
            created_by=created_by,
        )
        logger.info(f"Restocked product {product_id}: {stock_before} -> {product.stock_quantity}")
        return product

    def adjust_stock(
        self,
        product_id: int,
        new_quantity: int,
        reason: str,
        created_by: int | None = None,
    ) -> ProductModel:
        """Korekta inwentaryzacyjna: ustawia stan fizyczny na podaną wartość."""
        if new_quantity < 0:
            raise BusinessRuleError("Stock quantity cannot be negative")
        if not reason:
            raise BusinessRuleError("Adjustment reason is required")

        product = self._lock_product(product_id)

        # zarezerwowane sztuki muszą zostać na stanie
        if new_quantity < product.reserved_quantity:
            raise InventoryStateError(
                f"Cannot set stock of product {product_id} to {new_quantity}, "
                f"{product.reserved_quantity} reserved"
            )

        stock_before = product.stock_quantity
        product.stock_quantity = new_quantity

        self._record(
            product,
            ADJUSTMENT,
            quantity_change=new_quantity - stock_before,
            quantity_before=stock_before,
            reserved_before=product.reserved_quantity,
            reference_number=None,
            reference_type="adjustment",
            reason=reason,
            created_by=created_by,
        )
        logger.info(f"Adjusted stock of product {product_id}: {stock_before} -> {new_quantity} ({reason})")

        if product.track_inventory and product.stock_quantity <= product.low_stock_threshold:
            self._low_stock_alert(product)
        return product

    # helpers
    def _lock_product(self, product_id: int) -> ProductModel:
        product = self.db.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def _has_movement(self, product_id: int, reference_number: str, movement_type: str) -> bool:
        return (
            self.db.execute(
                select(InventoryMovementModel.id).where(
                    InventoryMovementModel.product_id == product_id,
                    InventoryMovementModel.reference_number == reference_number,
                    InventoryMovementModel.type == movement_type,
                ).limit(1)
            ).first()
            is not None
        )

    def _record(
        self,
        product: ProductModel,
        movement_type: str,
        quantity_change: int,
        quantity_before: int,
        reserved_before: int,
        reference_number: str | None,
        reason: str,
        reference_type: str = "order",
        reference_id: int | None = None,
        created_by: int | None = None,
    ) -> None:
        self.db.add(
            InventoryMovementModel(
                product_id=product.id,
                type=movement_type,
                quantity_before=quantity_before,
                quantity_change=quantity_change,
                quantity_after=product.stock_quantity,
                reserved_before=reserved_before,
                reserved_after=product.reserved_quantity,
                reference_type=reference_type,
                reference_id=reference_id,
                reference_number=reference_number,
                batch_number=product.batch_number,
                reason=reason,
                created_by=created_by,
            )
        )
        self.db.flush()

    def _low_stock_alert(self, product: ProductModel) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(
                "low_stock_alert",
                None,
                None,
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "stock_quantity": product.stock_quantity,
                    "threshold": product.low_stock_threshold,
                },
            )
        except Exception:
            logger.exception(f"Failed to send low stock alert for product {product.id}")
