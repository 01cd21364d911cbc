# pharmorder/services/audit_service.py
from typing import Any, Dict

from pharmorder.celery_worker import celery_app
from pharmorder.data.database import SessionLocal
from pharmorder.data.models.audit_log import AuditLogModel
from pharmorder.utils.logging import get_logger

logger = get_logger(__name__)


class AuditLogService:
    """Dziennik audytu - zapis w osobnej transakcji przez Celery."""

    def log(
        self,
        actor_id: int | None,
        action: str,
        entity_type: str,
        entity_id,
        before: Dict[str, Any] | None = None,
        after: Dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> None:
        write_audit_log_task.delay(
            {
                "actor_id": actor_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": None if entity_id is None else str(entity_id),
                "before": _jsonable(before),
                "after": _jsonable(after),
                "ip_address": ip_address,
            }
        )


def _jsonable(data: Dict[str, Any] | None):
    if data is None:
        return None
    return {k: v if isinstance(v, (int, bool, str, type(None))) else str(v) for k, v in data.items()}


@celery_app.task(name="pharmorder.services.audit_service.write_audit_log_task")
def write_audit_log_task(entry: Dict[str, Any]):
    db = SessionLocal()
    try:
        db.add(AuditLogModel(**entry))
        db.commit()
        logger.info(f"Audit {entry['action']} on {entry['entity_type']} {entry['entity_id']}")
    except Exception:
        db.rollback()
        logger.exception(f"Failed to write audit log {entry['action']}")
        raise
    finally:
        db.close()
