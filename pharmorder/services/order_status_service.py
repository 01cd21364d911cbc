# pharmorder/services/order_status_service.py
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from pharmorder.data.models.order import OrderModel
from pharmorder.data.models.order_status_history import OrderStatusHistoryModel
from pharmorder.data.models.user import UserModel
from pharmorder.domain.errors import InvalidTransition, NotFoundError
from pharmorder.domain.order_status import ItemStatus, OrderStatus, StockState, can_transition
from pharmorder.repos.order_repo import OrderRepo
from pharmorder.services.inventory_service import InventoryService
from pharmorder.utils.clock import Clock, utc_now
from pharmorder.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TransitionContext:
    actor_id: int | None = None
    actor_name: str | None = None
    notes: str | None = None
    ip_address: str | None = None
    reason: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    expected_delivery_date: date | None = None
    meta: Dict[str, Any] = field(default_factory=dict)
    # webhook: błąd zwolnienia pojedynczej pozycji nie przerywa anulowania
    tolerate_release_errors: bool = False
    now: datetime | None = None


Handler = Callable[[InventoryService, OrderModel, TransitionContext], None]


def _on_pending(inventory, order, ctx):
    pass


def _on_confirmed(inventory, order, ctx):
    order.confirmed_at = ctx.now


def _on_processing(inventory, order, ctx):
    order.processed_at = ctx.now


def _on_packed(inventory, order, ctx):
    pass


def _on_shipped(inventory, order, ctx):
    order.shipped_at = ctx.now
    if ctx.tracking_number:
        order.tracking_number = ctx.tracking_number
    if ctx.tracking_url:
        order.tracking_url = ctx.tracking_url
    if ctx.expected_delivery_date:
        order.expected_delivery_date = ctx.expected_delivery_date

    for item in order.items:
        if item.stock_state != StockState.RESERVED.value:
            continue
        inventory.reduce_stock(
            item.product_id,
            item.quantity,
            "order",
            order.id,
            order.order_number,
            created_by=ctx.actor_id,
        )
        item.stock_state = StockState.FULFILLED.value


def _on_out_for_delivery(inventory, order, ctx):
    pass


def _on_delivered(inventory, order, ctx):
    order.delivered_at = ctx.now
    for item in order.items:
        item.status = ItemStatus.FULFILLED.value
        item.fulfilled_quantity = item.quantity


def _on_returned(inventory, order, ctx):
    pass


def _on_refunded(inventory, order, ctx):
    pass


def _on_cancelled(inventory, order, ctx):
    order.cancelled_at = ctx.now
    order.cancelled_by = ctx.actor_id
    order.cancel_reason = ctx.reason or ctx.notes

    for item in order.items:
        item.status = ItemStatus.CANCELLED.value
        # stan magazynu zwalniamy tylko dla pozycji nadal zarezerwowanych
        if item.stock_state != StockState.RESERVED.value:
            continue
        try:
            inventory.release_reserved_stock(
                item.product_id,
                item.quantity,
                order.order_number,
                created_by=ctx.actor_id,
            )
        except Exception:
            if not ctx.tolerate_release_errors:
                raise
            logger.exception(
                f"Failed to release stock of product {item.product_id} for order {order.order_number}"
            )
            continue
        item.stock_state = StockState.RELEASED.value


HANDLERS: Dict[OrderStatus, Handler] = {
    OrderStatus.PENDING: _on_pending,
    OrderStatus.CONFIRMED: _on_confirmed,
    OrderStatus.PROCESSING: _on_processing,
    OrderStatus.PACKED: _on_packed,
    OrderStatus.SHIPPED: _on_shipped,
    OrderStatus.OUT_FOR_DELIVERY: _on_out_for_delivery,
    OrderStatus.DELIVERED: _on_delivered,
    OrderStatus.RETURNED: _on_returned,
    OrderStatus.REFUNDED: _on_refunded,
    OrderStatus.CANCELLED: _on_cancelled,
}

_missing = set(OrderStatus) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No transition handler for order status: {sorted(s.value for s in _missing)}")


class OrderStatusService:
    """
    Maszyna stanów zamówienia.

    apply_transition() działa w transakcji wołającego (używa go też silnik
    płatności); update_status() i cancel() to pełne use case z commitem
    i powiadomieniami po commicie.
    """

    def __init__(self, db: Session, notifier=None, auditor=None, clock: Clock = utc_now):
        self.db = db
        self.repo = OrderRepo(db)
        self.inventory = InventoryService(db, notifier=notifier)
        self.notifier = notifier
        self.auditor = auditor
        self.clock = clock

    def apply_transition(
        self,
        order: OrderModel,
        target,
        ctx: TransitionContext | None = None,
    ) -> OrderStatusHistoryModel:
        ctx = ctx or TransitionContext()
        current = order.status
        target_value = target.value if isinstance(target, OrderStatus) else str(target)

        if not can_transition(current, target_value):
            raise InvalidTransition(current, target_value)

        target = OrderStatus(target_value)
        if ctx.now is None:
            ctx.now = self.clock()
        if ctx.actor_id is not None and ctx.actor_name is None:
            ctx.actor_name = self._actor_name(ctx.actor_id)

        HANDLERS[target](self.inventory, order, ctx)

        order.status = target.value
        entry = OrderStatusHistoryModel(
            order_id=order.id,
            previous_status=current,
            new_status=target.value,
            notes=ctx.notes or ctx.reason,
            changed_by=ctx.actor_id,
            changed_by_name=ctx.actor_name,
            ip_address=ctx.ip_address,
            meta=ctx.meta or None,
            created_at=ctx.now,
        )
        self.repo.add_history(entry)
        self.db.flush()

        logger.info(f"Order {order.order_number}: {current} -> {target.value}")
        return entry

    def update_status(
        self,
        order_id: int,
        status: str,
        actor_id: int | None,
        notes: str | None = None,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        expected_delivery_date: date | None = None,
        ip_address: str | None = None,
    ) -> OrderModel:
        ctx = TransitionContext(
            actor_id=actor_id,
            notes=notes,
            ip_address=ip_address,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            expected_delivery_date=expected_delivery_date,
        )
        # dane przesyłki trafiają też do metadanych wpisu historii
        tracking = {
            "tracking_number": tracking_number,
            "tracking_url": tracking_url,
            "expected_delivery_date": expected_delivery_date.isoformat() if expected_delivery_date else None,
        }
        ctx.meta.update({k: v for k, v in tracking.items() if v is not None})
        if status == OrderStatus.CANCELLED.value:
            ctx.reason = notes
        return self._run(order_id, status, ctx, event_type="order_status_update")

    def cancel(
        self,
        order_id: int,
        actor_id: int | None,
        reason: str | None = None,
        ip_address: str | None = None,
    ) -> OrderModel:
        ctx = TransitionContext(
            actor_id=actor_id,
            reason=reason or "Cancelled",
            notes=reason,
            ip_address=ip_address,
        )
        return self._run(order_id, OrderStatus.CANCELLED.value, ctx, event_type="order_cancelled")

    def _run(self, order_id: int, status: str, ctx: TransitionContext, event_type: str) -> OrderModel:
        try:
            order = self.repo.get_order(order_id, lock=True)
            if not order:
                raise NotFoundError("Order not found")

            previous = order.status
            self.apply_transition(order, status, ctx)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._after_commit(order, previous, ctx, event_type)
        return order

    def _after_commit(self, order: OrderModel, previous: str, ctx: TransitionContext, event_type: str) -> None:
        # best effort - błąd nie zmienia wyniku operacji
        if self.notifier is not None:
            try:
                self.notifier.notify(
                    event_type,
                    order,
                    order.user,
                    {"previous_status": previous, "new_status": order.status, "notes": ctx.notes},
                )
            except Exception:
                logger.exception(f"Failed to send {event_type} for order {order.order_number}")

        if self.auditor is not None:
            try:
                self.auditor.log(
                    ctx.actor_id,
                    "status_change",
                    "order",
                    order.id,
                    before={"status": previous},
                    after={"status": order.status},
                    ip_address=ctx.ip_address,
                )
            except Exception:
                logger.exception(f"Failed to write audit log for order {order.order_number}")

    def _actor_name(self, actor_id: int) -> str | None:
        user = self.db.get(UserModel, actor_id)
        return user.full_name if user else None
