# pharmorder/repos/payment_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmorder.data.models.payment import PaymentModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: int, lock: bool = False) -> PaymentModel | None:
        stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_transaction_id(self, transaction_id: str) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel).where(PaymentModel.transaction_id == transaction_id)
        ).scalar_one_or_none()

    def list_for_order(self, order_id: int):
        return self.db.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        ).scalars().all()
