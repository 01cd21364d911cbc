# pharmorder/tasks/expire.py
from sqlalchemy import update

from pharmorder.celery_worker import celery_app
from pharmorder.data.database import SessionLocal
from pharmorder.data.models.cart import CartModel
from pharmorder.utils.clock import utc_now
from pharmorder.utils.logging import get_logger

logger = get_logger(__name__)


def expire_carts(db, now=None) -> int:
    """Aktywne koszyki po expires_at -> expired. Zwraca liczbę koszyków."""
    now = now or utc_now()
    result = db.execute(
        update(CartModel)
        .where(CartModel.status == "active", CartModel.expires_at < now)
        .values(status="expired", version=CartModel.version + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


@celery_app.task(name="pharmorder.tasks.expire.expire_carts_task")
def expire_carts_task():
    logger.info("Expire carts task started")

    db = SessionLocal()
    try:
        count = expire_carts(db)
        logger.info(f"Expired {count} carts")
        return count
    except Exception:
        db.rollback()
        logger.exception("Expire carts task failed")
        raise
    finally:
        db.close()
