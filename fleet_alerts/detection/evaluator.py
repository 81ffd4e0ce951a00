"""
Threshold evaluator for fleet compliance checks.

This module provides the ThresholdEvaluator class which turns fleet
snapshots and thresholds into a list of Findings. It performs no I/O and
is deterministic for fixed inputs.

Key Features:
    - VTV expiry checks with critical (<= 7 days) and warning (<= 30 days) tiers
    - Insurance expiry checks (expired vs. expiring, 30-day window)
    - Driver licence checks (due today or already expired, active users only)
    - Service due checks by kilometres and/or elapsed months
    - Per-entity error boundary: one malformed record never hides the rest

Day arithmetic uses integer floor division of the time delta by one day,
so a deadline 12 hours ahead yields 0 days and 12 hours behind yields -1.

Example:
    >>> evaluator = ThresholdEvaluator()
    >>> findings = evaluator.evaluate(
    ...     now=datetime.now(timezone.utc),
    ...     vehicles=vehicles,
    ...     users=users,
    ...     thresholds=ThresholdConfig(),
    ... )
    >>> for finding in findings:
    ...     print(finding.type.value, finding.message)
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import structlog

from fleet_alerts.errors import EvaluationError
from fleet_alerts.models.findings import EntityType, Finding, FindingType
from fleet_alerts.models.fleet import (
    MonitoredUser,
    MonitoredVehicle,
    ThresholdConfig,
    ensure_utc,
)

logger = structlog.get_logger(__name__)

# Deadline windows in days
VTV_WARNING_DAYS = 30
VTV_CRITICAL_DAYS = 7
INSURANCE_WARNING_DAYS = 30

# Average month length used for service intervals
MONTH_LENGTH = timedelta(days=30.44)

ONE_DAY = timedelta(days=1)

T = TypeVar("T")


def days_between(now: datetime, target: datetime) -> int:
    """
    Whole days from ``now`` until ``target``, floored.

    Args:
        now: Reference instant.
        target: Deadline.

    Returns:
        int: Floored day count (negative once the deadline has passed).

    Raises:
        EvaluationError: If either value is not a datetime.

    Example:
        >>> now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        >>> days_between(now, now + timedelta(hours=12))
        0
        >>> days_between(now, now - timedelta(hours=12))
        -1
    """
    if not isinstance(now, datetime) or not isinstance(target, datetime):
        raise EvaluationError(
            f"Expected datetimes, got {type(now).__name__} and {type(target).__name__}"
        )
    return (ensure_utc(target) - ensure_utc(now)) // ONE_DAY


class ThresholdEvaluator:
    """
    Evaluates fleet snapshots against compliance thresholds.

    Findings are produced category by category (VTV, licence, insurance,
    service) and, within a category, in input order. No severity sorting
    is applied.

    Attributes:
        None - this is a stateless evaluator.

    Example:
        >>> evaluator = ThresholdEvaluator()
        >>> now = datetime(2025, 3, 1, tzinfo=timezone.utc)
        >>> vehicle = MonitoredVehicle(
        ...     id="veh-1", plate="AB123CD", vtv_expiry=now + timedelta(days=5)
        ... )
        >>> [f.type.value for f in evaluator.evaluate_vtv(now, [vehicle])]
        ['vtv_expiring_critical']
    """

    def evaluate(
        self,
        now: datetime,
        vehicles: Sequence[MonitoredVehicle],
        users: Sequence[MonitoredUser],
        thresholds: ThresholdConfig,
    ) -> List[Finding]:
        """
        Run every compliance check.

        Args:
            now: Evaluation instant.
            vehicles: Vehicle snapshots.
            users: User snapshots.
            thresholds: Thresholds for this run.

        Returns:
            List[Finding]: VTV, licence, insurance then service findings.
        """
        findings: List[Finding] = []
        findings.extend(self.evaluate_vtv(now, vehicles))
        findings.extend(self.evaluate_licenses(now, users))
        findings.extend(self.evaluate_insurance(now, vehicles))
        findings.extend(self.evaluate_service(now, vehicles, thresholds))
        return findings

    def evaluate_vtv(
        self,
        now: datetime,
        vehicles: Iterable[MonitoredVehicle],
    ) -> List[Finding]:
        """
        Check VTV inspection expiry.

        Vehicles whose VTV expires within 30 days (or already expired)
        produce one finding each:
            - days < 0: vtv_expired
            - 0 <= days <= 7: vtv_expiring_critical
            - 8 <= days <= 30: vtv_expiring

        Args:
            now: Evaluation instant.
            vehicles: Vehicle snapshots.

        Returns:
            List[Finding]: VTV findings in input order.
        """
        return self._collect("vtv", vehicles, lambda v: self._check_vtv(now, v))

    def evaluate_licenses(
        self,
        now: datetime,
        users: Iterable[MonitoredUser],
    ) -> List[Finding]:
        """
        Check driver licence expiry for active users.

        Only licences already due (expiration <= now) are reported; there
        is no advance warning window.

        Args:
            now: Evaluation instant.
            users: User snapshots.

        Returns:
            List[Finding]: license_expiring findings in input order.
        """
        return self._collect("license", users, lambda u: self._check_license(now, u))

    def evaluate_insurance(
        self,
        now: datetime,
        vehicles: Iterable[MonitoredVehicle],
    ) -> List[Finding]:
        """
        Check insurance expiry (expired vs. expiring within 30 days).

        Args:
            now: Evaluation instant.
            vehicles: Vehicle snapshots.

        Returns:
            List[Finding]: Insurance findings in input order.
        """
        return self._collect("insurance", vehicles, lambda v: self._check_insurance(now, v))

    def evaluate_service(
        self,
        now: datetime,
        vehicles: Iterable[MonitoredVehicle],
        thresholds: ThresholdConfig,
    ) -> List[Finding]:
        """
        Check whether vehicles are due for service.

        Vehicles missing either mileage reading are skipped. A negative
        kilometre delta (odometer reset) never triggers by kilometres.

        Args:
            now: Evaluation instant.
            vehicles: Vehicle snapshots.
            thresholds: Service intervals for this run.

        Returns:
            List[Finding]: service_due findings in input order.
        """
        return self._collect(
            "service", vehicles, lambda v: self._check_service(now, v, thresholds)
        )

    def _collect(
        self,
        category: str,
        entities: Iterable[T],
        check: Callable[[T], Optional[Finding]],
    ) -> List[Finding]:
        """
        Apply a check to each entity inside its own error boundary.

        Args:
            category: Category name for logging.
            entities: Snapshots to check.
            check: Per-entity check returning a Finding or None.

        Returns:
            List[Finding]: Findings from entities that evaluated cleanly.
        """
        findings: List[Finding] = []
        skipped = 0

        for entity in entities:
            try:
                finding = check(entity)
            except (EvaluationError, TypeError, ValueError, ArithmeticError, AttributeError) as e:
                skipped += 1
                logger.warning(
                    "entity_evaluation_failed",
                    category=category,
                    entity_id=getattr(entity, "id", None),
                    error=str(e),
                )
                continue

            if finding is not None:
                findings.append(finding)

        logger.debug(
            "category_evaluated",
            category=category,
            findings=len(findings),
            skipped=skipped,
        )
        return findings

    def _check_vtv(self, now: datetime, vehicle: MonitoredVehicle) -> Optional[Finding]:
        if vehicle.vtv_expiry is None:
            return None

        days = days_between(now, vehicle.vtv_expiry)
        if days > VTV_WARNING_DAYS:
            return None

        if days < 0:
            finding_type = FindingType.VTV_EXPIRED
            message = f"CRÍTICO: VTV del vehículo {vehicle.plate} VENCIDA hace {abs(days)} días"
        elif days <= VTV_CRITICAL_DAYS:
            finding_type = FindingType.VTV_EXPIRING_CRITICAL
            message = f"URGENTE: VTV del vehículo {vehicle.plate} vence en {days} días"
        else:
            finding_type = FindingType.VTV_EXPIRING
            message = f"AVISO: VTV del vehículo {vehicle.plate} vence en {days} días"

        return Finding(
            type=finding_type,
            entity_type=EntityType.VEHICLE,
            entity_id=vehicle.id,
            severity=finding_type.severity,
            days_remaining=days,
            message=message,
            data={
                "plate": vehicle.plate,
                "brand": vehicle.brand,
                "model": vehicle.model,
                "vtv_expiry": vehicle.vtv_expiry.isoformat(),
                "days_until_expiry": days,
            },
        )

    def _check_license(self, now: datetime, user: MonitoredUser) -> Optional[Finding]:
        if not user.active or user.license_expiration is None:
            return None

        if user.license_expiration > ensure_utc(now):
            return None

        days_expired = days_between(user.license_expiration, now)

        if days_expired == 0:
            message = f"URGENTE: Licencia de {user.name} vence HOY"
        else:
            message = f"CRÍTICO: Licencia de {user.name} VENCIDA hace {days_expired} días"

        finding_type = FindingType.LICENSE_EXPIRING
        return Finding(
            type=finding_type,
            entity_type=EntityType.USER,
            entity_id=user.id,
            severity=finding_type.severity,
            days_remaining=-days_expired,
            message=message,
            data={
                "user_name": user.name,
                "user_email": user.email,
                "license_expiration": user.license_expiration.isoformat(),
                "days_expired": days_expired,
            },
        )

    def _check_insurance(self, now: datetime, vehicle: MonitoredVehicle) -> Optional[Finding]:
        if vehicle.insurance_expiry is None:
            return None

        days = days_between(now, vehicle.insurance_expiry)
        if days > INSURANCE_WARNING_DAYS:
            return None

        if days < 0:
            finding_type = FindingType.INSURANCE_EXPIRED
            message = f"CRÍTICO: Seguro del vehículo {vehicle.plate} VENCIDO hace {abs(days)} días"
        else:
            finding_type = FindingType.INSURANCE_EXPIRING
            message = f"AVISO: Seguro del vehículo {vehicle.plate} vence en {days} días"

        return Finding(
            type=finding_type,
            entity_type=EntityType.VEHICLE,
            entity_id=vehicle.id,
            severity=finding_type.severity,
            days_remaining=days,
            message=message,
            data={
                "plate": vehicle.plate,
                "brand": vehicle.brand,
                "model": vehicle.model,
                "insurance_expiry": vehicle.insurance_expiry.isoformat(),
                "days_until_expiry": days,
            },
        )

    def _check_service(
        self,
        now: datetime,
        vehicle: MonitoredVehicle,
        thresholds: ThresholdConfig,
    ) -> Optional[Finding]:
        if vehicle.current_mileage is None or vehicle.last_service_mileage is None:
            return None

        km_since_service = vehicle.current_mileage - vehicle.last_service_mileage
        due_by_km = km_since_service >= 0 and km_since_service >= thresholds.service_km_interval

        months_since_service = 0.0
        due_by_date = False
        if vehicle.last_service_date is not None:
            months_since_service = (ensure_utc(now) - vehicle.last_service_date) / MONTH_LENGTH
            due_by_date = months_since_service >= thresholds.service_month_interval

        if not (due_by_km or due_by_date):
            return None

        whole_months = math.floor(months_since_service)
        km_part = f"{km_since_service} km"
        km_limit = f"(límite: {thresholds.service_km_interval} km)"
        month_part = f"{whole_months} meses"
        month_limit = f"(límite: {thresholds.service_month_interval} meses)"

        if due_by_km and due_by_date:
            reason = f"{km_part} {km_limit} y {month_part} {month_limit} desde último service"
        elif due_by_km:
            reason = f"{km_part} desde último service {km_limit}"
        else:
            reason = f"{month_part} desde último service {month_limit}"

        finding_type = FindingType.SERVICE_DUE
        return Finding(
            type=finding_type,
            entity_type=EntityType.VEHICLE,
            entity_id=vehicle.id,
            severity=finding_type.severity,
            days_remaining=0,
            message=f"MANTENIMIENTO: Vehículo {vehicle.plate} necesita service ({reason})",
            data={
                "plate": vehicle.plate,
                "brand": vehicle.brand,
                "model": vehicle.model,
                "current_mileage": vehicle.current_mileage,
                "last_service_mileage": vehicle.last_service_mileage,
                "km_since_service": km_since_service,
                "months_since_service": whole_months,
                "reason": reason,
            },
        )


def create_evaluator() -> ThresholdEvaluator:
    """
    Factory function to create a ThresholdEvaluator.

    Returns:
        ThresholdEvaluator: A new evaluator instance.
    """
    return ThresholdEvaluator()
