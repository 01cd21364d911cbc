# pharmorder/utils/settings_cache.py
from datetime import timedelta
from typing import Any, Callable, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmorder.data.models.system_setting import SystemSettingModel
from pharmorder.utils.clock import Clock, utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import money

logger = get_logger(__name__)


class SettingsCache:
    """
    Cache ustawień z tabeli system_settings.
    - jawny obiekt (bez globalnej zmiennej modułu)
    - wstrzykiwany zegar -> testowalny TTL
    - invalidate() po zmianie ustawienia
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ttl_seconds: int,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._values: Dict[str, str] = {}
        self._loaded_at = None

    def _expired(self) -> bool:
        return self._loaded_at is None or self.clock() - self._loaded_at >= self.ttl

    def _reload(self) -> None:
        db = self.session_factory()
        try:
            rows = db.execute(select(SystemSettingModel)).scalars().all()
            self._values = {row.key: row.value for row in rows}
            self._loaded_at = self.clock()
            logger.info(f"Settings cache loaded ({len(self._values)} keys)")
        finally:
            db.close()

    def get(self, key: str, default: Any = None) -> Any:
        if self._expired():
            self._reload()
        value = self._values.get(key)
        return default if value in (None, "") else value

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(self.get(key, default))
        except (TypeError, ValueError):
            logger.warning(f"Setting {key} is not an integer, using {default}")
            return default

    def get_decimal(self, key: str, default: str):
        try:
            return money(self.get(key, default))
        except ArithmeticError:
            logger.warning(f"Setting {key} is not a number, using {default}")
            return money(default)

    def invalidate(self, key: str | None = None) -> None:
        # następny get() przeładuje wszystko z bazy
        if key is None:
            self._values = {}
        else:
            self._values.pop(key, None)
        self._loaded_at = None

