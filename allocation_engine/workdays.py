from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60

Holiday = Tuple[date, str]
HolidaySource = Callable[[int], Iterable[Holiday]]


class CalendarSyncError(RuntimeError):
    def __init__(self, year: int, reason: str) -> None:
        super().__init__(f"calendar sync for {year} failed: {reason}")
        self.year = year
        self.reason = reason


def is_leap_year(year: int) -> bool:
    return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0


def days_in_year(year: int) -> int:
    return 366 if is_leap_year(year) else 365


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


@dataclass(frozen=True)
class CalendarDay:
    day: date
    is_weekend: bool
    is_holiday: bool
    holiday_name: Optional[str] = None

    @property
    def is_working_day(self) -> bool:
        return not self.is_weekend and not self.is_holiday


def build_year_days(year: int, holidays: Iterable[Holiday] = ()) -> List[CalendarDay]:
    holiday_by_day: Dict[date, str] = {day: name for day, name in holidays}
    first = date(year, 1, 1)
    result: List[CalendarDay] = []
    for offset in range(days_in_year(year)):
        day = first + timedelta(days=offset)
        name = holiday_by_day.get(day)
        result.append(
            CalendarDay(day=day, is_weekend=is_weekend(day), is_holiday=name is not None, holiday_name=name)
        )
    return result


class WorkingDayCalendar:
    """Immutable ``day -> is working day`` snapshot.

    Days missing from the snapshot fall back to the weekday rule.
    """

    def __init__(self, days: Mapping[date, bool] | None = None) -> None:
        self._days: Dict[date, bool] = dict(days or {})

    @classmethod
    def from_days(cls, days: Iterable[CalendarDay]) -> "WorkingDayCalendar":
        return cls({item.day: item.is_working_day for item in days})

    @classmethod
    def from_holidays(cls, holidays_by_year: Mapping[int, Iterable[Holiday]]) -> "WorkingDayCalendar":
        merged: Dict[date, bool] = {}
        for year, holidays in holidays_by_year.items():
            for item in build_year_days(year, holidays):
                merged[item.day] = item.is_working_day
        return cls(merged)

    def merged_with(self, days: Iterable[CalendarDay]) -> "WorkingDayCalendar":
        merged = dict(self._days)
        for item in days:
            merged[item.day] = item.is_working_day
        return WorkingDayCalendar(merged)

    def is_working_day(self, day: date) -> bool:
        known = self._days.get(day)
        if known is None:
            return not is_weekend(day)
        return known

    __call__ = is_working_day

    def year_mask(self, year: int) -> List[bool]:
        first = date(year, 1, 1)
        return [self.is_working_day(first + timedelta(days=offset)) for offset in range(days_in_year(year))]

    def covers_year(self, year: int) -> bool:
        first = date(year, 1, 1)
        return all(first + timedelta(days=offset) in self._days for offset in range(days_in_year(year)))


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class YearSyncState:
    year: int
    last_attempt_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_status: str = "missing"
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "year": self.year,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class SyncResult:
    year: int
    refreshed: bool
    used_fallback: bool
    last_success_at: Optional[datetime]


@dataclass
class CalendarRefresher:
    """Keeps a :class:`WorkingDayCalendar` snapshot fresh from a holiday source.

    Readers call :meth:`snapshot` and get a whole immutable calendar; a refresh
    builds a new one and swaps it in under the lock.
    """

    holiday_source: HolidaySource
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    interval_seconds: float = DEFAULT_TTL_SECONDS
    include_next_year: bool = True
    clock: Callable[[], datetime] = _now
    _calendar: WorkingDayCalendar = field(default_factory=WorkingDayCalendar, init=False)
    _states: Dict[int, YearSyncState] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)

    def snapshot(self) -> WorkingDayCalendar:
        with self._lock:
            return self._calendar

    def state(self, year: int) -> YearSyncState:
        with self._lock:
            return self._states.setdefault(year, YearSyncState(year=year))

    def _should_sync(self, year: int, force: bool) -> bool:
        if force:
            return True
        with self._lock:
            state = self._states.get(year)
            calendar = self._calendar
        if state is None or state.last_success_at is None:
            return True
        age = (self.clock() - state.last_success_at).total_seconds()
        if age > self.ttl_seconds:
            return True
        return not calendar.covers_year(year)

    def sync_year(self, year: int, force: bool = False) -> SyncResult:
        state = self.state(year)
        if not self._should_sync(year, force):
            return SyncResult(year=year, refreshed=False, used_fallback=False, last_success_at=state.last_success_at)
        attempted_at = self.clock()
        try:
            holidays = list(self.holiday_source(year))
            days = build_year_days(year, holidays)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            with self._lock:
                state.last_attempt_at = attempted_at
                state.last_status = "error"
                state.last_error = message
                has_snapshot = self._calendar.covers_year(year)
            if has_snapshot:
                logger.warning("calendar sync for %s failed, keeping previous snapshot: %s", year, message)
                return SyncResult(year=year, refreshed=False, used_fallback=True, last_success_at=state.last_success_at)
            raise CalendarSyncError(year, message) from exc
        with self._lock:
            self._calendar = self._calendar.merged_with(days)
            state.last_attempt_at = attempted_at
            state.last_success_at = attempted_at
            state.last_status = "ok"
            state.last_error = None
        logger.info("calendar %s refreshed with %d holidays", year, len(holidays))
        return SyncResult(year=year, refreshed=True, used_fallback=False, last_success_at=attempted_at)

    def sync_years(
        self,
        years: Sequence[int] = (),
        force: bool = False,
        include_next_year: Optional[bool] = None,
    ) -> List[SyncResult]:
        target = set(years)
        if not target:
            target.add(self.clock().year)
        if self.include_next_year if include_next_year is None else include_next_year:
            target.update(year + 1 for year in list(target))
        return [self.sync_year(year, force) for year in sorted(target)]

    def health(self) -> Dict[str, Dict[str, object]]:
        current_year = self.clock().year
        now = self.clock()
        report: Dict[str, Dict[str, object]] = {}
        for label, year in (("current_year", current_year), ("next_year", current_year + 1)):
            state = self.state(year)
            if state.last_success_at is None:
                freshness = "missing"
            elif (now - state.last_success_at).total_seconds() <= self.ttl_seconds:
                freshness = "fresh"
            else:
                freshness = "stale"
            payload = state.to_dict()
            payload["freshness"] = freshness
            report[label] = payload
        return report

    def _run_background(self) -> None:
        while True:
            try:
                self.sync_years()
            except CalendarSyncError as exc:
                logger.warning("background calendar sync failed: %s", exc)
            if self._stop.wait(self.interval_seconds):
                break

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_background, name="calendar-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
