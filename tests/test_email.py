"""
Tests for email templates and the SMTP gateway.
"""

import smtplib
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fleet_alerts.config.models import EmailConfig
from fleet_alerts.models.notifications import NotificationPayload
from fleet_alerts.notifications.email import EmailGateway, html_to_text
from fleet_alerts.notifications.templates import (
    SYSTEM_NAME,
    build_finding_email,
    format_date,
    insurance_alert_email,
    license_alert_email,
    maintenance_alert_email,
    vtv_alert_email,
)


@pytest.fixture
def smtp_config() -> EmailConfig:
    return EmailConfig(
        enabled=True,
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="alerts@example.com",
        smtp_password="secret",
    )


class TestFormatDate:
    """Tests for date formatting in templates."""

    def test_datetime(self):
        """Test dd/mm/yyyy formatting of a datetime."""
        assert format_date(datetime(2025, 3, 6, tzinfo=timezone.utc)) == "06/03/2025"

    def test_iso_string(self):
        """Test that ISO strings are parsed first."""
        assert format_date("2025-12-31T10:00:00+00:00") == "31/12/2025"

    def test_unparseable_string_passthrough(self):
        """Test that unknown strings are returned unchanged."""
        assert format_date("pronto") == "pronto"

    def test_none(self):
        """Test the placeholder for missing dates."""
        assert format_date(None) == "-"


class TestTemplates:
    """Tests for the alert email builders."""

    def test_vtv_critical(self):
        """Test the urgent VTV subject and body."""
        template = vtv_alert_email(
            plate="AB123CD",
            brand="Ford",
            model="Ranger",
            vtv_expiry="2025-03-06T00:00:00+00:00",
            days_until_expiry=5,
            is_expired=False,
        )

        assert template.subject == "URGENTE: VTV del vehículo AB123CD"
        assert "vence en <strong>5 días</strong>" in template.html
        assert "06/03/2025" in template.html
        assert SYSTEM_NAME in template.html

    def test_vtv_warning_and_expired_subjects(self):
        """Test subject labels for the other VTV tiers."""
        warning = vtv_alert_email("AB123CD", "Ford", "Ranger", "2025-03-25", 24, False)
        expired = vtv_alert_email("AB123CD", "Ford", "Ranger", "2025-02-25", -4, True)

        assert warning.subject == "AVISO: VTV del vehículo AB123CD"
        assert expired.subject == "VENCIDA: VTV del vehículo AB123CD"
        assert "está VENCIDA hace <strong>4 días</strong>" in expired.html

    def test_license_subjects(self):
        """Test the licence subjects for due today and already expired."""
        today = license_alert_email("Juan Pérez", "juan@example.com", "2025-03-01", 0)
        expired = license_alert_email("Juan Pérez", None, "2025-02-20", 9)

        assert today.subject == "URGENTE: Licencia de conducir vence HOY"
        assert expired.subject == "CRÍTICO: Licencia de conducir VENCIDA"
        assert "VENCIDA hace 9 días" in expired.html

    def test_insurance_subjects(self):
        """Test the insurance subject labels."""
        expired = insurance_alert_email("AB123CD", "Ford", "Ranger", "2025-02-25", -4, True)
        expiring = insurance_alert_email("AB123CD", "Ford", "Ranger", "2025-03-25", 24, False)

        assert expired.subject == "CRÍTICO: Seguro del vehículo AB123CD"
        assert expiring.subject == "AVISO: Seguro del vehículo AB123CD"

    def test_maintenance(self):
        """Test the service due subject and reason."""
        template = maintenance_alert_email("AB123CD", "Ford", "Ranger", "12000 km desde último service")

        assert template.subject == "Mantenimiento Requerido: AB123CD"
        assert "12000 km desde último service" in template.html

    def test_values_are_escaped(self):
        """Test that HTML in data values is escaped."""
        template = maintenance_alert_email("<b>X</b>", "Ford", "Ranger", "motivo")

        assert "<b>X</b>" not in template.html
        assert "&lt;b&gt;X&lt;/b&gt;" in template.html


class TestBuildFindingEmail:
    """Tests for template selection from payloads."""

    def test_vtv_payload(self):
        """Test that VTV payloads render the VTV template."""
        payload = NotificationPayload(
            type="vtv_expired",
            entity_type="vehicle",
            entity_id="veh-1",
            message="CRÍTICO",
            data={
                "plate": "AB123CD",
                "brand": "Ford",
                "model": "Ranger",
                "vtv_expiry": "2025-02-25T00:00:00+00:00",
                "days_until_expiry": -4,
            },
        )

        template = build_finding_email(payload)

        assert template is not None
        assert template.subject == "VENCIDA: VTV del vehículo AB123CD"

    def test_payload_without_data(self):
        """Test that payloads without data have no email."""
        payload = NotificationPayload(
            type="vtv_expired", entity_type="vehicle", entity_id="veh-1", message="x"
        )
        assert build_finding_email(payload) is None

    def test_unknown_type(self):
        """Test that unknown types have no email."""
        payload = NotificationPayload(
            type="custom", entity_type="vehicle", entity_id="veh-1", message="x", data={"a": 1}
        )
        assert build_finding_email(payload) is None

    def test_missing_field_raises(self):
        """Test that incomplete data raises KeyError."""
        payload = NotificationPayload(
            type="service_due", entity_type="vehicle", entity_id="veh-1", message="x",
            data={"plate": "AB123CD"},
        )
        with pytest.raises(KeyError):
            build_finding_email(payload)


class TestHtmlToText:
    """Tests for plain-text derivation."""

    def test_strips_tags_and_entities(self):
        """Test tag removal, line breaks and entity decoding."""
        text = html_to_text("<style>p {}</style><p>Hola&nbsp;<b>mundo</b></p><p>a<br>b &amp; c</p>")

        assert text == "Hola mundo\n\na\nb & c"


class TestEmailGateway:
    """Tests for EmailGateway."""

    def test_disabled_by_flag(self):
        """Test that the gateway is disabled when the flag is off."""
        assert EmailGateway(EmailConfig(enabled=False)).enabled is False

    def test_disabled_when_settings_missing(self):
        """Test that the gateway is disabled with incomplete SMTP settings."""
        assert EmailGateway(EmailConfig(enabled=True, smtp_host="smtp.example.com")).enabled is False

    def test_enabled(self, smtp_config):
        """Test that full settings enable the gateway."""
        gateway = EmailGateway(smtp_config)

        assert gateway.enabled is True
        assert gateway.sender.endswith("<alerts@example.com>")

    def test_build_message_parts(self, smtp_config):
        """Test that the message carries a text part then an HTML part."""
        gateway = EmailGateway(smtp_config)

        message = gateway.build_message(["a@x.com", "b@x.com"], "Asunto", "<p>Hola</p>")

        assert message["To"] == "a@x.com, b@x.com"
        parts = message.get_payload()
        assert [part.get_content_subtype() for part in parts] == ["plain", "html"]

    @pytest.mark.asyncio
    async def test_send_when_disabled_returns_false(self):
        """Test that a disabled gateway is a no-op."""
        gateway = EmailGateway(EmailConfig(enabled=False))

        with patch("fleet_alerts.notifications.email.smtplib.SMTP") as mock_smtp:
            assert await gateway.send_email("a@x.com", "Asunto", "<p>Hola</p>") is False
            mock_smtp.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_without_recipients(self, smtp_config):
        """Test that an empty recipient list is not sent."""
        gateway = EmailGateway(smtp_config)

        assert await gateway.send_email([], "Asunto", "<p>Hola</p>") is False

    @pytest.mark.asyncio
    async def test_send_with_starttls(self, smtp_config):
        """Test delivery over SMTP with STARTTLS."""
        gateway = EmailGateway(smtp_config)

        with patch("fleet_alerts.notifications.email.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.has_extn.return_value = True

            result = await gateway.send_email(["a@x.com"], "Asunto", "<p>Hola</p>")

        assert result is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alerts@example.com", "secret")
        from_addr, to_addrs, _ = server.sendmail.call_args[0]
        assert from_addr == "alerts@example.com"
        assert to_addrs == ["a@x.com"]

    @pytest.mark.asyncio
    async def test_send_over_implicit_tls(self, smtp_config):
        """Test that port 465 uses SMTP_SSL."""
        gateway = EmailGateway(smtp_config.model_copy(update={"smtp_port": 465}))

        with patch("fleet_alerts.notifications.email.smtplib.SMTP_SSL") as mock_ssl:
            result = await gateway.send_email("a@x.com", "Asunto", "<p>Hola</p>")

        assert result is True
        mock_ssl.return_value.__enter__.return_value.sendmail.assert_called_once()

    @pytest.mark.asyncio
    async def test_smtp_failure_returns_false(self, smtp_config):
        """Test that SMTP errors are logged and reported as False."""
        gateway = EmailGateway(smtp_config)

        with patch("fleet_alerts.notifications.email.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

            result = await gateway.send_email("a@x.com", "Asunto", "<p>Hola</p>")

        assert result is False
