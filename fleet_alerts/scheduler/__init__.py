"""
Scheduling of evaluation runs.

Components:
    schedule: next_run_time arithmetic over local run times
    runner: EvaluationRunner (one run) and AlertScheduler (daily triggers)
"""

from fleet_alerts.scheduler.runner import AlertScheduler, EvaluationRunner, RunSummary
from fleet_alerts.scheduler.schedule import next_run_time, resolve_timezone

__all__: list[str] = [
    "AlertScheduler",
    "EvaluationRunner",
    "RunSummary",
    "next_run_time",
    "resolve_timezone",
]
