"""
Fleet Alerts.

Compliance alerting for a vehicle fleet: detects expired or expiring VTV
inspections, insurance policies and driver licences plus service due
conditions, and delivers notifications to an external system and by email.

This package provides:
- Data models for fleet snapshots, findings and notification logs
- A pure threshold evaluator
- Notification dispatch, retry and signed webhook intake
- A daily scheduler and an HTTP API
- Configuration management and PostgreSQL storage
"""

__version__ = "1.0.0"
