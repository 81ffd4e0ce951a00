"""
Scheduled evaluation runs.

EvaluationRunner performs one full pass (load thresholds and fleet
snapshots, evaluate, dispatch every finding). AlertScheduler triggers
runs at fixed local times of day and optionally once after startup.

Each category pass and each finding dispatch sits inside its own error
boundary, so a failure is logged and the rest of the run continues.
"""

import asyncio
import time as time_module
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import structlog
from pydantic import BaseModel, Field, ValidationError

from fleet_alerts.detection.evaluator import ThresholdEvaluator
from fleet_alerts.models.findings import Finding
from fleet_alerts.models.fleet import (
    MonitoredUser,
    MonitoredVehicle,
    ThresholdConfig,
    resolve_recipients,
)
from fleet_alerts.notifications.dispatcher import NotificationDispatcher
from fleet_alerts.scheduler.schedule import next_run_time, resolve_timezone, seconds_until
from fleet_alerts.storage.base import FleetSource

logger = structlog.get_logger(__name__)

DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"

_THRESHOLD_FIELDS = (
    "service_km_interval",
    "service_month_interval",
    "check_interval_days",
    "enable_email_alerts",
)


class RunSummary(BaseModel):
    """
    Outcome of one evaluation run.

    Attributes:
        started_at: Run start instant.
        duration_seconds: Wall-clock duration.
        findings: Finding count per category (vtv, license, insurance, service).
        dispatched: Notifications delivered successfully.
        failed: Notifications that failed or raised.
        errors: Category passes that failed.
    """

    model_config = {"frozen": True}

    started_at: datetime
    duration_seconds: float = 0.0
    findings: Dict[str, int] = Field(default_factory=dict)
    dispatched: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def total_findings(self) -> int:
        """Total findings across categories."""
        return sum(self.findings.values())


class EvaluationRunner:
    """
    Runs one complete evaluation and dispatch cycle.

    Attributes:
        fleet_source: Source of vehicles, users and maintenance config.
        evaluator: Threshold evaluator.
        dispatcher: Notification dispatcher.
        default_thresholds: Thresholds used when the fleet store has none.
        legacy_recipient: Single fallback email recipient.

    Example:
        >>> runner = EvaluationRunner(store, evaluator, dispatcher, ThresholdConfig())
        >>> summary = await runner.run()
        >>> summary.findings["vtv"]
        2
    """

    def __init__(
        self,
        fleet_source: FleetSource,
        evaluator: ThresholdEvaluator,
        dispatcher: NotificationDispatcher,
        default_thresholds: ThresholdConfig,
        legacy_recipient: Optional[str] = None,
    ) -> None:
        self.fleet_source = fleet_source
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.default_thresholds = default_thresholds
        self.legacy_recipient = legacy_recipient

    async def load_thresholds(self) -> ThresholdConfig:
        """
        Build this run's thresholds.

        Values stored in the fleet maintenance configuration override the
        defaults. Recipients come from the stored configuration, then the
        defaults, then the legacy single recipient. Any load or validation
        failure falls back to the defaults.

        Returns:
            ThresholdConfig: Thresholds for the run.
        """
        try:
            stored = await self.fleet_source.fetch_maintenance_config()
        except Exception as e:
            logger.error("maintenance_config_load_failed", error=str(e))
            return self._with_fallback_recipients(self.default_thresholds)

        if not stored:
            return self._with_fallback_recipients(self.default_thresholds)

        merged: Dict[str, Any] = self.default_thresholds.model_dump()
        for field in _THRESHOLD_FIELDS:
            if stored.get(field) is not None:
                merged[field] = stored[field]

        recipients = resolve_recipients(stored.get("notification_emails"))
        if recipients:
            merged["notification_recipients"] = recipients

        try:
            thresholds = ThresholdConfig(**merged)
        except ValidationError as e:
            logger.error("maintenance_config_invalid", error=str(e))
            return self._with_fallback_recipients(self.default_thresholds)

        return self._with_fallback_recipients(thresholds)

    def _with_fallback_recipients(self, thresholds: ThresholdConfig) -> ThresholdConfig:
        if thresholds.notification_recipients or not self.legacy_recipient:
            return thresholds
        return thresholds.model_copy(
            update={
                "notification_recipients": resolve_recipients(None, self.legacy_recipient),
            }
        )

    async def run(self, now: Optional[datetime] = None) -> RunSummary:
        """
        Evaluate the fleet and dispatch every finding.

        Args:
            now: Evaluation instant (defaults to current UTC time).

        Returns:
            RunSummary: Counts and duration of the run.
        """
        started_at = now or datetime.now(timezone.utc)
        start = time_module.monotonic()
        logger.info("alert_run_started", started_at=started_at.isoformat())

        thresholds = await self.load_thresholds()
        vehicles: List[MonitoredVehicle] = await self._load(
            "vehicles", self.fleet_source.fetch_vehicles
        )
        users: List[MonitoredUser] = await self._load("users", self.fleet_source.fetch_users)

        passes: List[Tuple[str, Callable[[], List[Finding]]]] = [
            ("vtv", lambda: self.evaluator.evaluate_vtv(started_at, vehicles)),
            ("license", lambda: self.evaluator.evaluate_licenses(started_at, users)),
            ("insurance", lambda: self.evaluator.evaluate_insurance(started_at, vehicles)),
            ("service", lambda: self.evaluator.evaluate_service(started_at, vehicles, thresholds)),
        ]

        counts: Dict[str, int] = {}
        errors: List[str] = []
        dispatched = 0
        failed = 0

        for category, evaluate in passes:
            try:
                findings: List[Finding] = evaluate()
            except Exception as e:
                logger.error("alert_pass_failed", category=category, error=str(e))
                counts[category] = 0
                errors.append(category)
                continue

            counts[category] = len(findings)
            for finding in findings:
                if await self._dispatch(finding, thresholds):
                    dispatched += 1
                else:
                    failed += 1

            logger.info("alert_pass_completed", category=category, findings=len(findings))

        summary = RunSummary(
            started_at=started_at,
            duration_seconds=round(time_module.monotonic() - start, 3),
            findings=counts,
            dispatched=dispatched,
            failed=failed,
            errors=errors,
        )
        logger.info(
            "alert_run_completed",
            duration_seconds=summary.duration_seconds,
            findings=summary.findings,
            dispatched=dispatched,
            failed=failed,
        )
        return summary

    async def _load(self, name: str, fetch: Callable[[], Any]) -> List[Any]:
        try:
            return list(await fetch())
        except Exception as e:
            logger.error("fleet_load_failed", source=name, error=str(e))
            return []

    async def _dispatch(self, finding: Finding, thresholds: ThresholdConfig) -> bool:
        try:
            result = await self.dispatcher.dispatch(finding.to_payload(), thresholds)
        except Exception as e:
            logger.error(
                "finding_dispatch_failed",
                type=finding.type.value,
                entity_id=finding.entity_id,
                error=str(e),
            )
            return False
        return result.success


class AlertScheduler:
    """
    Triggers evaluation runs at fixed local times of day.

    Each trigger spawns its own task; a run that outlasts the gap to the
    next trigger overlaps with it. ``stop()`` cancels the loop and every
    in-flight run.

    Attributes:
        runner: Evaluation runner.
        run_times: Local wall-clock trigger times.
        timezone: IANA zone of the trigger times.
        run_on_start: Run once shortly after ``start()``.
        start_delay_seconds: Delay before the startup run.
    """

    def __init__(
        self,
        runner: EvaluationRunner,
        run_times: Sequence[time] = (time(8, 0), time(10, 0)),
        timezone: str = DEFAULT_TIMEZONE,
        run_on_start: bool = False,
        start_delay_seconds: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.runner = runner
        self.run_times = list(run_times)
        self.timezone = resolve_timezone(timezone)
        self.run_on_start = run_on_start
        self.start_delay_seconds = start_delay_seconds
        self._clock = clock or (lambda: datetime.now(tz=self.timezone))

        self._loop_task: Optional[asyncio.Task] = None
        self._run_tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        """Check if the trigger loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def active_runs(self) -> int:
        """Number of runs currently in flight."""
        return len(self._run_tasks)

    def start(self) -> None:
        """Start the trigger loop (and the startup run if enabled)."""
        if self.is_running:
            logger.warning("scheduler_already_running")
            return

        self._loop_task = asyncio.create_task(self._loop())
        if self.run_on_start:
            self._spawn(self._delayed_run(), "startup")

        logger.info(
            "scheduler_started",
            run_times=[t.strftime("%H:%M") for t in self.run_times],
            timezone=str(self.timezone),
            run_on_start=self.run_on_start,
        )

    async def stop(self) -> None:
        """Cancel the trigger loop and every in-flight run."""
        tasks = list(self._run_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._loop_task = None
        self._run_tasks.clear()
        logger.info("scheduler_stopped", cancelled=len(tasks))

    def next_run(self) -> datetime:
        """Next trigger instant."""
        return next_run_time(self._clock(), self.run_times, self.timezone)

    async def _loop(self) -> None:
        last_target: Optional[datetime] = None
        try:
            while True:
                now = self._clock()
                # An early wake-up must not resolve to the slot that just fired
                after = now if last_target is None or now > last_target else last_target
                target = next_run_time(after, self.run_times, self.timezone)
                logger.info("alert_run_scheduled", next_run=target.isoformat())
                await asyncio.sleep(seconds_until(now, target))
                self._spawn(self._safe_run("scheduled"), "scheduled")
                last_target = target
        except asyncio.CancelledError:
            logger.debug("scheduler_loop_cancelled")

    async def _delayed_run(self) -> None:
        await asyncio.sleep(self.start_delay_seconds)
        await self._safe_run("startup")

    async def _safe_run(self, trigger: str) -> Optional[RunSummary]:
        try:
            return await self.runner.run()
        except Exception as e:
            logger.error("alert_run_failed", trigger=trigger, error=str(e))
            return None

    def _spawn(self, coro: Any, trigger: str) -> None:
        task = asyncio.create_task(coro)
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)
        logger.debug("alert_run_spawned", trigger=trigger, active_runs=len(self._run_tasks))
