# pharmorder/api/deps.py
from fastapi import Request

from pharmorder.data.database import SessionLocal
from pharmorder.services.audit_service import AuditLogService
from pharmorder.services.notification_service import NotificationService
from pharmorder.utils.settings import SETTINGS_CACHE_TTL
from pharmorder.utils.settings_cache import SettingsCache

# jeden cache ustawień na proces
settings_cache = SettingsCache(SessionLocal, ttl_seconds=SETTINGS_CACHE_TTL)


def get_notifier() -> NotificationService:
    return NotificationService()


def get_auditor() -> AuditLogService:
    return AuditLogService()


def get_settings_cache() -> SettingsCache:
    return settings_cache


def get_ip_address(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
