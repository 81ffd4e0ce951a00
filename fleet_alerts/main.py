"""
Fleet alerts service entry point.

Usage:
    python -m fleet_alerts

    Or with an installed console script:
    fleet-alerts

Environment Variables:
    CONFIG_PATH: YAML configuration file (default: config/alerts.yaml)
    DATABASE_URL: PostgreSQL connection URL
    LOG_LEVEL / LOG_FORMAT: Logging level and format
    API_HOST / API_PORT: HTTP bind address (default: 0.0.0.0:8080)
"""

import sys

import structlog
import uvicorn

from fleet_alerts.api.app import create_app
from fleet_alerts.config.loader import ConfigLoadError, load_config
from fleet_alerts.services import create_alert_service, setup_logging


def main() -> None:
    """
    Main entry point for the fleet alerts service.

    Loads configuration, configures logging and serves the API with the
    scheduler running inside the application lifespan.
    """
    try:
        config = load_config()
    except ConfigLoadError as e:
        setup_logging()
        structlog.get_logger(__name__).error("config_load_failed", error=str(e))
        sys.exit(1)

    setup_logging(config.logging.level, config.logging.format)

    logger = structlog.get_logger(__name__)
    logger.info(
        "fleet_alerts_starting",
        version="1.0.0",
        host=config.api.host,
        port=config.api.port,
    )

    app = create_app(create_alert_service(config))

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.level.value.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
