"""
Compliance detection.

Components:
    evaluator: ThresholdEvaluator turning fleet snapshots into Findings
"""

from fleet_alerts.detection.evaluator import (
    INSURANCE_WARNING_DAYS,
    VTV_CRITICAL_DAYS,
    VTV_WARNING_DAYS,
    ThresholdEvaluator,
    create_evaluator,
    days_between,
)

__all__: list[str] = [
    "ThresholdEvaluator",
    "create_evaluator",
    "days_between",
    "VTV_WARNING_DAYS",
    "VTV_CRITICAL_DAYS",
    "INSURANCE_WARNING_DAYS",
]
