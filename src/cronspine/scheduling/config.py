"""Scheduler configuration snapshot.

Tunables live in the ``{prefix}settings`` table so an operator can change
them while agents run. Each agent keeps a ``SchedulerConfig`` snapshot,
refreshes it at the start of every batch and passes it explicitly to the
collaborators that need it (no module-level state).

===============  ======  ===========  =============================================
setting          kind    fallback     meaning
===============  ======  ===========  =============================================
``enabled``      bool    0            process tasks at all
``retry``        int     3600         one-time instance retry step (seconds)
``log_life``     int     30           days of log rows to keep
``sse_loop``     bool    0            streaming agents keep looping between batches
``sse_retry``    int     10000        stream reconnect hint (ms); idle sleep is /20 s
``max_threads``  int     4            ceiling on distinct active claim tokens
===============  ======  ===========  =============================================

Values ``<= 0`` are replaced by the fallback when written, and ignored
(current value kept) when read. Booleans above 1 are stored as 1.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from cronspine.core.errors import InvalidSettingError
from cronspine.core.logging import get_logger
from cronspine.core.repository import BaseRepository

logger = get_logger(__name__)

BOOLEAN_SETTINGS = frozenset({"enabled", "sse_loop"})

SETTING_FALLBACKS: dict[str, int] = {
    "enabled": 0,
    "retry": 3600,
    "log_life": 30,
    "sse_loop": 0,
    "sse_retry": 10000,
    "max_threads": 4,
}

# setting name -> SchedulerConfig attribute
_ATTRIBUTES = {
    "enabled": "enabled",
    "retry": "one_time_retry",
    "log_life": "log_life",
    "sse_loop": "sse_loop",
    "sse_retry": "sse_retry",
    "max_threads": "max_threads",
}


@dataclass(frozen=True)
class SchedulerConfig:
    """Immutable snapshot of the scheduler tunables.

    Starts disabled: an agent must read the datastore before it does any
    work.
    """

    enabled: bool = False
    one_time_retry: int = 3600
    log_life: int = 30
    sse_loop: bool = False
    sse_retry: int = 10000
    max_threads: int = 4

    @property
    def idle_sleep_seconds(self) -> float:
        """Back-off between empty or capacity-starved streaming cycles."""
        return self.sse_retry / 20

    def as_settings(self) -> dict[str, int]:
        """Render as ``{setting: value}`` using the stored names."""
        return {
            name: int(getattr(self, attr))
            for name, attr in _ATTRIBUTES.items()
        }


def normalize_setting(name: str, value: Any) -> int:
    """Validate a setting name and coerce its value for storage.

    Raises:
        InvalidSettingError: Unknown setting or non-integer value.
    """
    if name not in SETTING_FALLBACKS:
        raise InvalidSettingError(name, value)
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise InvalidSettingError(name, value, f"Setting '{name}' requires an integer, got {value!r}") from e
    if number <= 0:
        return SETTING_FALLBACKS[name]
    if name in BOOLEAN_SETTINGS:
        return 1
    return number


def apply_settings(config: SchedulerConfig, settings: dict[str, Any]) -> SchedulerConfig:
    """Return ``config`` updated with the in-range values of ``settings``.

    Booleans take any integer value (0 disables). Numeric settings only
    replace the current value when positive. Unknown keys are ignored.
    """
    changes: dict[str, Any] = {}
    for name, raw in settings.items():
        attr = _ATTRIBUTES.get(name)
        if attr is None:
            continue
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.warning("setting_unparseable", setting=name, value=raw)
            continue
        if name in BOOLEAN_SETTINGS:
            changes[attr] = value > 0
        elif value > 0:
            changes[attr] = value
    return replace(config, **changes)


class SettingsRepository(BaseRepository):
    """Reads and writes the ``{prefix}settings`` table."""

    def load(self) -> dict[str, Any]:
        """All stored settings as ``{name: value}``."""
        with self.guard("load settings"):
            rows = self.query(f"SELECT setting, value FROM {self.table('settings')}")
        return {row["setting"]: row["value"] for row in rows}

    def refresh(self, config: SchedulerConfig | None = None) -> SchedulerConfig:
        """Fresh snapshot based on ``config`` (or the defaults)."""
        return apply_settings(config or SchedulerConfig(), self.load())

    def set(self, name: str, value: Any, config: SchedulerConfig | None = None) -> SchedulerConfig:
        """Persist one setting and return the new snapshot.

        Raises:
            InvalidSettingError: Unknown setting name (nothing is written).
            DatastoreError: The write failed.
        """
        stored = normalize_setting(name, value)
        sql = self.dialect.upsert(
            self.table("settings"), ["setting", "value"], ["setting"]
        )
        with self.transaction(f"set setting {name}"):
            self.execute(sql, (name, str(stored)))
        logger.info("setting_changed", setting=name, value=stored)
        return self.refresh(config)


__all__ = [
    "SETTING_FALLBACKS",
    "SchedulerConfig",
    "SettingsRepository",
    "apply_settings",
    "normalize_setting",
]
