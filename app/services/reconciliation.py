from __future__ import annotations

import asyncio
import enum
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.actors import FORCED_ACTOR, MANUAL_ACTOR, SCHEDULER_ACTOR, Actor
from app.logging_utils import bind
from app.models import ReconciliationMode
from app.services.derived_records import apply_outcome
from app.services.reconciliation_errors import PartialBatchFailure, ValidationError
from app.services.reconciliation_port import StoreFactory
from app.services.shift_matching import MatchPolicy, latest_start_at, match_slot, match_unscheduled

logger = logging.getLogger("app.reconciliation")

MAX_FORCED_RANGE_DAYS = 366


class UnitState(str, enum.Enum):
    PENDING = "PENDING"
    FETCHING = "FETCHING"
    MATCHING = "MATCHING"
    WRITING = "WRITING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class ReconciliationUnit:
    team_id: int
    day_date: date
    mode: ReconciliationMode


@dataclass(slots=True)
class UnitResult:
    unit: ReconciliationUnit
    state: UnitState = UnitState.PENDING
    error: str | None = None
    outcomes: Counter = field(default_factory=Counter)
    writes: Counter = field(default_factory=Counter)

    @property
    def succeeded(self) -> bool:
        return self.state == UnitState.SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "equipeId": self.unit.team_id,
            "data": self.unit.day_date.isoformat(),
            "success": self.succeeded,
            "error": self.error,
            "outcomes": dict(self.outcomes),
            "writes": dict(self.writes),
        }


@dataclass(slots=True)
class BatchResult:
    mode: ReconciliationMode
    unit_results: list[UnitResult] = field(default_factory=list)

    @property
    def total_units(self) -> int:
        return len(self.unit_results)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.unit_results if item.succeeded)

    @property
    def failed(self) -> int:
        return self.total_units - self.succeeded

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def team_ids(self) -> list[int]:
        return sorted({item.unit.team_id for item in self.unit_results})

    def failed_labels(self) -> list[str]:
        return [
            f"{item.unit.team_id}@{item.unit.day_date.isoformat()}: {item.error}"
            for item in self.unit_results
            if not item.succeeded
        ]

    def raise_for_partial_failure(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self.total_units, self.failed_labels())


def policy_from_settings(settings) -> MatchPolicy:
    try:
        tz = ZoneInfo((settings.reconciliation_timezone or "").strip() or "America/Sao_Paulo")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("America/Sao_Paulo")
    return MatchPolicy(
        margin_minutes=settings.reconciliation_margin_minutes,
        overtime_threshold_minutes=settings.overtime_threshold_minutes,
        tz=tz,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationOrchestrator:
    """Runs (team, day) units through fetch, match and write.

    Each unit gets its own store, and therefore its own transaction, from
    ``store_factory``. A failing unit is rolled back and recorded; it never
    stops the rest of the batch.
    """

    def __init__(
        self,
        store_factory: StoreFactory,
        policy: MatchPolicy,
        *,
        max_workers: int = 4,
        scheduled_lookback_days: int = 1,
        forced_default_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store_factory = store_factory
        self.policy = policy
        self.max_workers = max(1, max_workers)
        self.scheduled_lookback_days = max(0, scheduled_lookback_days)
        self.forced_default_days = max(0, forced_default_days)
        self.clock = clock

    def local_today(self) -> date:
        return self.clock().astimezone(self.policy.tz).date()

    def reconcile_unit(self, unit: ReconciliationUnit, actor: Actor) -> UnitResult:
        result = UnitResult(unit=unit)
        policy = self.policy.as_forced() if unit.mode == ReconciliationMode.FORCED else self.policy
        unit_log = bind(
            logger,
            {"team_id": unit.team_id, "day": unit.day_date, "mode": unit.mode, "actor": actor.label},
        )
        try:
            with self.store_factory() as store:
                result.state = UnitState.FETCHING
                slot = store.get_planned_slot(unit.team_id, unit.day_date)
                shifts = store.get_actual_shifts(unit.day_date)
                scheduled_worker_ids = store.get_scheduled_worker_ids(unit.day_date)

                result.state = UnitState.MATCHING
                outcomes = match_slot(slot, shifts, policy) if slot is not None else []
                outcomes.extend(
                    match_unscheduled(
                        team_id=unit.team_id,
                        day=unit.day_date,
                        shifts=shifts,
                        scheduled_worker_ids=scheduled_worker_ids,
                    )
                )

                result.state = UnitState.WRITING
                now = self.clock()
                for outcome in outcomes:
                    result.outcomes[outcome.kind.value] += 1
                    for write in apply_outcome(store, outcome, actor, now=now):
                        result.writes[write.action.value] += 1
                store.mark_reconciled(unit.team_id, unit.day_date, unit.mode, actor)
        except Exception as exc:
            failed_in = result.state
            result.state = UnitState.FAILED
            result.error = str(exc) or exc.__class__.__name__
            unit_log.exception(
                "reconciliation_unit_failed",
                extra={"failed_in": failed_in, "error_type": exc.__class__.__name__},
            )
            return result

        result.state = UnitState.SUCCEEDED
        unit_log.info(
            "reconciliation_unit_succeeded",
            extra={"outcomes": dict(result.outcomes), "writes": dict(result.writes)},
        )
        return result

    async def run_units(
        self,
        units: list[ReconciliationUnit],
        actor: Actor,
        *,
        mode: ReconciliationMode,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        semaphore = asyncio.Semaphore(self.max_workers)

        async def _run(unit: ReconciliationUnit) -> UnitResult:
            async with semaphore:
                if stop_event is not None and stop_event.is_set():
                    return UnitResult(unit=unit, state=UnitState.FAILED, error="aborted")
                return await asyncio.to_thread(self.reconcile_unit, unit, actor)

        results = await asyncio.gather(*(_run(unit) for unit in units))
        batch = BatchResult(mode=mode, unit_results=list(results))
        logger.info(
            "reconciliation_batch_complete",
            extra={
                "mode": mode.value,
                "actor": actor.label,
                "total_units": batch.total_units,
                "succeeded": batch.succeeded,
                "failed": batch.failed,
            },
        )
        return batch

    def scheduled_units(self, now: datetime | None = None) -> list[ReconciliationUnit]:
        now = now or self.clock()
        today = now.astimezone(self.policy.tz).date()
        start = today - timedelta(days=self.scheduled_lookback_days)
        margin = timedelta(minutes=self.policy.margin_minutes)

        units: list[ReconciliationUnit] = []
        with self.store_factory() as store:
            pairs = store.published_slot_days(start, today)
            for team_id, day in sorted(pairs, key=lambda item: (item[1], item[0])):
                slot = store.get_planned_slot(team_id, day)
                if slot is None:
                    continue
                start_at = latest_start_at(slot, self.policy.tz)
                if start_at is None:
                    if day >= today:
                        continue
                elif now < start_at + margin:
                    continue
                units.append(ReconciliationUnit(team_id=team_id, day_date=day, mode=ReconciliationMode.SCHEDULED))
        return units

    def manual_units(
        self,
        *,
        day: date,
        team_id: int | None = None,
        all_teams: bool = False,
    ) -> list[ReconciliationUnit]:
        if all_teams:
            with self.store_factory() as store:
                team_ids = store.teams_with_published_schedule(day, day)
        elif team_id is None:
            raise ValidationError("equipeId is required when todasEquipes is false")
        else:
            team_ids = [team_id]
        return [ReconciliationUnit(team_id=item, day_date=day, mode=ReconciliationMode.MANUAL) for item in team_ids]

    def resolve_forced_range(
        self,
        *,
        start: date | None = None,
        end: date | None = None,
        history_days: int | None = None,
    ) -> tuple[date, date]:
        if history_days is not None and history_days < 0:
            raise ValidationError("diasHistorico must not be negative")
        end = end or self.local_today()
        if start is None:
            lookback = self.forced_default_days if history_days is None else history_days
            start = end - timedelta(days=lookback)
        if start > end:
            raise ValidationError("dataInicio must not be after dataFim")
        if (end - start).days + 1 > MAX_FORCED_RANGE_DAYS:
            raise ValidationError(f"Forced range must not exceed {MAX_FORCED_RANGE_DAYS} days")
        return start, end

    def forced_units(self, *, start: date, end: date) -> list[ReconciliationUnit]:
        with self.store_factory() as store:
            published = store.published_slot_days(start, end)
            done = store.reconciled_pairs(start, end)
        pending = sorted(published - done, key=lambda item: (item[1], item[0]))
        return [
            ReconciliationUnit(team_id=team_id, day_date=day, mode=ReconciliationMode.FORCED)
            for team_id, day in pending
        ]

    async def run_scheduled(
        self,
        *,
        now: datetime | None = None,
        actor: Actor = SCHEDULER_ACTOR,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        units = await asyncio.to_thread(self.scheduled_units, now)
        return await self.run_units(units, actor, mode=ReconciliationMode.SCHEDULED, stop_event=stop_event)

    async def run_manual(
        self,
        *,
        day: date,
        team_id: int | None = None,
        all_teams: bool = False,
        actor: Actor = MANUAL_ACTOR,
    ) -> BatchResult:
        if not all_teams and team_id is None:
            raise ValidationError("equipeId is required when todasEquipes is false")
        units = await asyncio.to_thread(self.manual_units, day=day, team_id=team_id, all_teams=all_teams)
        return await self.run_units(units, actor, mode=ReconciliationMode.MANUAL)

    async def run_forced(
        self,
        *,
        start: date | None = None,
        end: date | None = None,
        history_days: int | None = None,
        actor: Actor = FORCED_ACTOR,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult:
        start, end = self.resolve_forced_range(start=start, end=end, history_days=history_days)
        units = await asyncio.to_thread(self.forced_units, start=start, end=end)
        return await self.run_units(units, actor, mode=ReconciliationMode.FORCED, stop_event=stop_event)


def scheduled_run_due(now_local: datetime, last_run_day: date | None, run_hour: int) -> bool:
    """True once per local day, on the first check at or after ``run_hour``."""
    if now_local.hour < run_hour:
        return False
    return last_run_day != now_local.date()
