"""
Fleet snapshot models consumed by the threshold evaluator.

These are read-only views of the fleet store: the alerting system never
mutates vehicles or users.

Models:
    MonitoredVehicle: Vehicle compliance snapshot
    MonitoredUser: Driver licence snapshot
    ThresholdConfig: Per-run evaluation thresholds and email settings
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Interpret naive datetimes as UTC.

    Args:
        value: Datetime from the fleet store, possibly naive.

    Returns:
        Optional[datetime]: Timezone-aware datetime, or None.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_recipients(
    configured: Union[str, Iterable[str], None],
    legacy_recipient: Optional[str] = None,
) -> List[str]:
    """
    Resolve the ordered, deduplicated list of email recipients.

    Recipients configured in the fleet store win (comma-separated string or
    list). When none are configured, the legacy single recipient is used.

    Args:
        configured: Recipients from the maintenance configuration.
        legacy_recipient: Fallback single address (NOTIFICATION_EMAIL).

    Returns:
        List[str]: Recipients in first-seen order without duplicates.

    Example:
        >>> resolve_recipients("a@x.com, b@x.com,a@x.com")
        ['a@x.com', 'b@x.com']
        >>> resolve_recipients("", "ops@x.com")
        ['ops@x.com']
    """
    if configured is None:
        candidates: List[str] = []
    elif isinstance(configured, str):
        candidates = configured.split(",")
    else:
        candidates = list(configured)

    recipients: List[str] = []
    for address in candidates:
        address = address.strip()
        if address and address not in recipients:
            recipients.append(address)

    if not recipients and legacy_recipient and legacy_recipient.strip():
        recipients.append(legacy_recipient.strip())

    return recipients


class MonitoredVehicle(BaseModel):
    """
    Read-only vehicle snapshot.

    Attributes:
        id: Vehicle identifier in the fleet store.
        plate: Licence plate.
        brand: Manufacturer.
        model: Model name.
        vtv_expiry: VTV inspection certificate expiry.
        insurance_expiry: Insurance policy expiry.
        current_mileage: Odometer reading in km.
        last_service_mileage: Odometer reading at the last service.
        last_service_date: Date of the last service.
    """

    model_config = {"frozen": True}

    id: str = Field(..., description="Vehicle identifier")
    plate: str = Field(..., description="Licence plate")
    brand: str = Field(default="", description="Manufacturer")
    model: str = Field(default="", description="Model name")
    vtv_expiry: Optional[datetime] = Field(default=None, description="VTV expiry")
    insurance_expiry: Optional[datetime] = Field(default=None, description="Insurance expiry")
    current_mileage: Optional[int] = Field(default=None, description="Odometer in km")
    last_service_mileage: Optional[int] = Field(
        default=None, description="Odometer at last service in km"
    )
    last_service_date: Optional[datetime] = Field(default=None, description="Last service date")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> str:
        """Accept integer primary keys."""
        return str(v)

    @field_validator("vtv_expiry", "insurance_expiry", "last_service_date")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive timestamps as UTC."""
        return ensure_utc(v)


class MonitoredUser(BaseModel):
    """
    Read-only driver snapshot.

    Attributes:
        id: User identifier in the fleet store.
        name: Display name.
        email: Contact address (informational).
        active: Whether the user is active.
        license_expiration: Driver licence expiry.
    """

    model_config = {"frozen": True}

    id: str = Field(..., description="User identifier")
    name: str = Field(..., description="Display name")
    email: Optional[str] = Field(default=None, description="Contact address")
    active: bool = Field(default=True, description="Whether the user is active")
    license_expiration: Optional[datetime] = Field(
        default=None, description="Driver licence expiry"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> str:
        """Accept integer primary keys."""
        return str(v)

    @field_validator("license_expiration")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive timestamps as UTC."""
        return ensure_utc(v)


class ThresholdConfig(BaseModel):
    """
    Thresholds and email settings for one evaluation run.

    Supplied once per run and immutable for its duration.

    Example:
        >>> config = ThresholdConfig(
        ...     service_km_interval=10000,
        ...     notification_recipients=["ops@example.com", "ops@example.com"],
        ... )
        >>> config.notification_recipients
        ['ops@example.com']
    """

    model_config = {"frozen": True, "extra": "forbid"}

    service_km_interval: int = Field(default=10000, description="Km between services", ge=1)
    service_month_interval: int = Field(default=6, description="Months between services", ge=1)
    check_interval_days: int = Field(default=7, description="Days between checks", ge=1)
    notification_recipients: List[str] = Field(
        default_factory=list,
        description="Ordered, deduplicated email recipients",
    )
    enable_email_alerts: bool = Field(default=True, description="Send email alerts")

    @field_validator("notification_recipients", mode="before")
    @classmethod
    def dedupe_recipients(cls, v: Union[str, Iterable[str], None]) -> List[str]:
        """Split, trim and deduplicate recipients preserving order."""
        return resolve_recipients(v)

    @property
    def should_email(self) -> bool:
        """Check whether emails should be sent for this run."""
        return self.enable_email_alerts and bool(self.notification_recipients)
