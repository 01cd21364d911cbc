# pharmorder/repos/order_repo.py
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from pharmorder.data.models.order import OrderModel
from pharmorder.data.models.order_sequence import OrderSequenceModel
from pharmorder.data.models.order_status_history import OrderStatusHistoryModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int, lock: bool = False) -> OrderModel | None:
        stmt = (
            select(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.is_deleted.is_(False))
            .options(selectinload(OrderModel.items))
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_number(self, order_number: str, lock: bool = False) -> OrderModel | None:
        stmt = (
            select(OrderModel)
            .where(OrderModel.order_number == order_number, OrderModel.is_deleted.is_(False))
            .options(selectinload(OrderModel.items))
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: int, status: str | None, page: int, limit: int):
        where = [OrderModel.user_id == user_id, OrderModel.is_deleted.is_(False)]
        if status:
            where.append(OrderModel.status == status)

        total = self.db.execute(select(func.count(OrderModel.id)).where(*where)).scalar_one()
        rows = self.db.execute(
            select(OrderModel)
            .where(*where)
            .options(selectinload(OrderModel.items))
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars().all()
        return rows, total

    def next_sequence(self, day_key: str) -> int:
        """Atomowy licznik dnia: SELECT ... FOR UPDATE na wierszu order_sequences."""
        seq = self.db.execute(
            select(OrderSequenceModel)
            .where(OrderSequenceModel.day_key == day_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if seq is None:
            # dwa równoległe inserty -> IntegrityError -> retry całej transakcji
            seq = OrderSequenceModel(day_key=day_key, last_value=0)
            self.db.add(seq)

        seq.last_value += 1
        self.db.flush()
        return seq.last_value

    def add_history(self, entry: OrderStatusHistoryModel) -> None:
        self.db.add(entry)
