"""Persisted value holder with optional calendar-day rollover.

Every value is stored under its key as a JSON envelope::

    {"date": "YYYY-MM-DD", "value": <value>}

where ``date`` is the local date of the last write. A container created with
``reset_at_midnight=True`` treats an envelope from an earlier date as stale:
it hands the stale value and its date to the rollover callback, then starts
over from the default. Staleness is checked on load, before every mutation,
from the periodic job in :mod:`stemmy.scheduler`, and whenever the host app
comes back to the foreground.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Callable, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from .store import KeyValueStore

logger = logging.getLogger("stemmy.persisted")

T = TypeVar("T")

RolloverCallback = Callable[[Any, str], None]


def today_local() -> str:
    """Today's local calendar date as YYYY-MM-DD."""
    return date.today().isoformat()


class PersistedState(Generic[T]):
    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        value_type: Any,
        default: Callable[[], T],
        *,
        reset_at_midnight: bool = False,
        on_rollover: RolloverCallback | None = None,
        today: Callable[[], str] = today_local,
    ):
        self.store = store
        self.key = key
        self.reset_at_midnight = reset_at_midnight
        self._adapter: TypeAdapter = TypeAdapter(value_type)
        self._default = default
        self._on_rollover = on_rollover
        self._today = today
        self._rolling_over = False

        self._value: T = self._load()
        self._persist()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if self.reset_at_midnight:
            self.check_stale()
        self._value = value
        self._persist()

    def update(self, fn: Callable[[T], T]) -> T:
        """Replace the value with ``fn(current)`` and persist it."""
        if self.reset_at_midnight:
            self.check_stale()
        self._value = fn(self._value)
        self._persist()
        return self._value

    def reset(self) -> None:
        """Go back to the default, stale or not. Does not archive."""
        self._value = self._default()
        self._persist()

    def check_stale(self) -> bool:
        """Roll over if the stored envelope is from an earlier day.

        Returns True when a rollover ran. After it, the stored date is today,
        so a second trigger arriving right behind the first sees fresh data.
        """
        if not self.reset_at_midnight or self._rolling_over:
            return False

        envelope = self._read_envelope()
        if envelope is None:
            return False
        stored_date, stale_value = envelope
        if stored_date == self._today():
            return False

        self._rolling_over = True
        try:
            logger.info("Rollover for %s: stored date %s is stale", self.key, stored_date)
            self._run_rollover(stale_value, stored_date)
            self._value = self._default()
            self._persist()
        finally:
            self._rolling_over = False
        return True

    def on_visibility_change(self, visible: bool) -> bool:
        """Host app moved between background and foreground."""
        if not visible:
            return False
        return self.check_stale()

    # ---- Internal ----

    def _load(self) -> T:
        envelope = self._read_envelope()
        if envelope is None:
            return self._default()

        stored_date, value = envelope
        if self.reset_at_midnight and stored_date != self._today():
            logger.info("Loaded stale %s from %s, rolling over", self.key, stored_date)
            self._rolling_over = True
            try:
                self._run_rollover(value, stored_date)
            finally:
                self._rolling_over = False
            return self._default()
        return value

    def _read_envelope(self) -> tuple[str, T] | None:
        raw = self.store.get(self.key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            stored_date = data["date"]
            value = self._adapter.validate_python(data["value"])
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            logger.warning("Ignoring unreadable envelope for %s: %s", self.key, e)
            return None
        if not isinstance(stored_date, str):
            logger.warning("Ignoring envelope for %s with bad date %r", self.key, stored_date)
            return None
        return stored_date, value

    def _run_rollover(self, stale_value: T, stale_date: str) -> None:
        if self._on_rollover is None:
            return
        try:
            self._on_rollover(stale_value, stale_date)
        except Exception:
            logger.exception("Rollover callback failed for %s (%s)", self.key, stale_date)

    def _persist(self) -> None:
        envelope = {
            "date": self._today(),
            "value": self._adapter.dump_python(self._value, mode="json", by_alias=True),
        }
        self.store.put(self.key, json.dumps(envelope))
