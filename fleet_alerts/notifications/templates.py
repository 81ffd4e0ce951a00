"""
Email templates for compliance alerts.

Each builder is a pure function returning an EmailTemplate (subject and
HTML body) rendered from the Jinja2 templates shipped in the
``html_templates/`` directory. Builders perform no I/O beyond reading the
packaged templates and can be tested in isolation.

Builders:
    vtv_alert_email: VTV inspection expired / expiring
    license_alert_email: Driver licence due today / expired
    insurance_alert_email: Insurance expired / expiring
    maintenance_alert_email: Service due
    build_finding_email: Pick the builder for a notification payload

Example:
    >>> template = vtv_alert_email(
    ...     plate="AB123CD",
    ...     brand="Ford",
    ...     model="Ranger",
    ...     vtv_expiry="2025-03-06T00:00:00+00:00",
    ...     days_until_expiry=5,
    ...     is_expired=False,
    ... )
    >>> template.subject
    'URGENTE: VTV del vehículo AB123CD'
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from jinja2 import Environment, PackageLoader, select_autoescape
from pydantic import BaseModel

from fleet_alerts.models.findings import FindingType
from fleet_alerts.models.notifications import NotificationPayload

SYSTEM_NAME = "Sistema de Gestión de Flota"

_CRITICAL_DAYS = 7

_env = Environment(
    loader=PackageLoader("fleet_alerts.notifications", "html_templates"),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


class EmailTemplate(BaseModel):
    """Rendered email subject and HTML body."""

    model_config = {"frozen": True}

    subject: str
    html: str


def format_date(value: Union[datetime, str, None]) -> str:
    """
    Format a date as dd/mm/yyyy.

    Args:
        value: Datetime or ISO-8601 string.

    Returns:
        str: Formatted date, or the input string if it cannot be parsed.
    """
    if value is None:
        return "-"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y")


def _render(template_name: str, **context: Any) -> str:
    context.setdefault("system_name", SYSTEM_NAME)
    return _env.get_template(template_name).render(**context)


def vtv_alert_email(
    plate: str,
    brand: str,
    model: str,
    vtv_expiry: Union[datetime, str],
    days_until_expiry: int,
    is_expired: bool,
) -> EmailTemplate:
    """
    Build the VTV alert email.

    Args:
        plate: Licence plate.
        brand: Manufacturer.
        model: Model name.
        vtv_expiry: VTV expiry date.
        days_until_expiry: Days until expiry (negative when expired).
        is_expired: Whether the VTV has already expired.

    Returns:
        EmailTemplate: Subject and HTML body.
    """
    is_critical = abs(days_until_expiry) <= _CRITICAL_DAYS
    if is_expired:
        urgency = "VENCIDA"
        colors = ("#fee", "#dc3545")
        first_action = "Programar VTV de forma INMEDIATA"
    elif is_critical:
        urgency = "URGENTE"
        colors = ("#fff3cd", "#ffc107")
        first_action = "Programar turno para VTV"
    else:
        urgency = "AVISO"
        colors = ("#e7f3ff", "#0d6efd")
        first_action = "Programar turno para VTV"

    html = _render(
        "vtv_alert.html",
        header_background="linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
        box_background=colors[0],
        box_border=colors[1],
        urgency=urgency,
        is_expired=is_expired,
        plate=plate,
        brand=brand,
        model=model,
        days=abs(days_until_expiry),
        expiry=format_date(vtv_expiry),
        action_heading="Acción requerida:",
        actions=[
            first_action,
            "Verificar disponibilidad en plantas verificadoras",
            "Preparar documentación necesaria",
        ],
    )
    return EmailTemplate(subject=f"{urgency}: VTV del vehículo {plate}", html=html)


def license_alert_email(
    user_name: str,
    user_email: Optional[str],
    license_expiration: Union[datetime, str],
    days_expired: int,
) -> EmailTemplate:
    """
    Build the driver licence alert email.

    Args:
        user_name: Driver name.
        user_email: Driver contact address.
        license_expiration: Licence expiry date.
        days_expired: Whole days since expiry (0 means today).

    Returns:
        EmailTemplate: Subject and HTML body.
    """
    due_today = days_expired == 0
    if due_today:
        subject = "URGENTE: Licencia de conducir vence HOY"
        first_action = "Suspender asignación de vehículos HOY"
    else:
        subject = "CRÍTICO: Licencia de conducir VENCIDA"
        first_action = "El conductor NO puede conducir vehículos de la empresa"

    html = _render(
        "license_alert.html",
        header_background="linear-gradient(135deg, #dc3545 0%, #c82333 100%)",
        box_background="#fee",
        box_border="#dc3545",
        due_today=due_today,
        user_name=user_name,
        user_email=user_email or "-",
        days_expired=days_expired,
        expiry=format_date(license_expiration),
        action_heading="Acción inmediata:",
        actions=[
            first_action,
            "Gestionar renovación de licencia",
            "Actualizar documentación en el sistema",
        ],
    )
    return EmailTemplate(subject=subject, html=html)


def insurance_alert_email(
    plate: str,
    brand: str,
    model: str,
    insurance_expiry: Union[datetime, str],
    days_until_expiry: int,
    is_expired: bool,
) -> EmailTemplate:
    """
    Build the insurance alert email.

    Args:
        plate: Licence plate.
        brand: Manufacturer.
        model: Model name.
        insurance_expiry: Policy expiry date.
        days_until_expiry: Days until expiry (negative when expired).
        is_expired: Whether the policy has already expired.

    Returns:
        EmailTemplate: Subject and HTML body.
    """
    label = "CRÍTICO" if is_expired else "AVISO"
    html = _render(
        "insurance_alert.html",
        header_background="linear-gradient(135deg, #28a745 0%, #218838 100%)",
        box_background="#fee" if is_expired else "#fff3cd",
        box_border="#dc3545" if is_expired else "#ffc107",
        is_expired=is_expired,
        plate=plate,
        brand=brand,
        model=model,
        days=abs(days_until_expiry),
        expiry=format_date(insurance_expiry),
        action_heading="Acción requerida:",
        actions=[
            "NO usar el vehículo hasta renovar seguro"
            if is_expired
            else "Contactar aseguradora para renovación",
            "Verificar cobertura actual",
            "Actualizar póliza en el sistema",
        ],
    )
    return EmailTemplate(subject=f"{label}: Seguro del vehículo {plate}", html=html)


def maintenance_alert_email(plate: str, brand: str, model: str, reason: str) -> EmailTemplate:
    """
    Build the service due email.

    Args:
        plate: Licence plate.
        brand: Manufacturer.
        model: Model name.
        reason: Trigger description from the evaluator.

    Returns:
        EmailTemplate: Subject and HTML body.
    """
    html = _render(
        "maintenance_alert.html",
        header_background="linear-gradient(135deg, #ffc107 0%, #ff9800 100%)",
        box_background="#fff3cd",
        box_border="#ffc107",
        plate=plate,
        brand=brand,
        model=model,
        reason=reason,
        action_heading="Acción requerida:",
        actions=[
            "Programar turno en taller",
            "Verificar disponibilidad mecánico",
            "Coordinar vehículo de reemplazo si es necesario",
        ],
    )
    return EmailTemplate(subject=f"Mantenimiento Requerido: {plate}", html=html)


_VTV_TYPES: List[str] = [
    FindingType.VTV_EXPIRED.value,
    FindingType.VTV_EXPIRING_CRITICAL.value,
    FindingType.VTV_EXPIRING.value,
]
_INSURANCE_TYPES: List[str] = [
    FindingType.INSURANCE_EXPIRED.value,
    FindingType.INSURANCE_EXPIRING.value,
]


def build_finding_email(payload: NotificationPayload) -> Optional[EmailTemplate]:
    """
    Pick and render the template matching a notification payload.

    Args:
        payload: Payload produced from a Finding (must carry ``data``).

    Returns:
        Optional[EmailTemplate]: Rendered email, or None if the type has
            no template or the payload carries no data.

    Raises:
        KeyError: If the payload data lacks a field the template needs.
    """
    data: Dict[str, Any] = payload.data or {}
    if not data:
        return None

    if payload.type in _VTV_TYPES:
        return vtv_alert_email(
            plate=data["plate"],
            brand=data.get("brand", ""),
            model=data.get("model", ""),
            vtv_expiry=data["vtv_expiry"],
            days_until_expiry=data["days_until_expiry"],
            is_expired=payload.type == FindingType.VTV_EXPIRED.value,
        )
    if payload.type == FindingType.LICENSE_EXPIRING.value:
        return license_alert_email(
            user_name=data["user_name"],
            user_email=data.get("user_email"),
            license_expiration=data["license_expiration"],
            days_expired=data["days_expired"],
        )
    if payload.type in _INSURANCE_TYPES:
        return insurance_alert_email(
            plate=data["plate"],
            brand=data.get("brand", ""),
            model=data.get("model", ""),
            insurance_expiry=data["insurance_expiry"],
            days_until_expiry=data["days_until_expiry"],
            is_expired=payload.type == FindingType.INSURANCE_EXPIRED.value,
        )
    if payload.type == FindingType.SERVICE_DUE.value:
        return maintenance_alert_email(
            plate=data["plate"],
            brand=data.get("brand", ""),
            model=data.get("model", ""),
            reason=data["reason"],
        )
    return None
