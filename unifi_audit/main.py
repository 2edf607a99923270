"""Entry point: starts the audit API server with configured settings."""

import uvicorn

from .config import get_settings
from .logging_config import get_logger, setup_logging
from .server import app

logger = get_logger(__name__)


def main() -> None:
    """Start the audit server."""
    settings = get_settings()
    setup_logging(settings.audit_log_level)

    logger.info(
        "Starting UniFi security audit server",
        extra={
            "host": settings.audit_server_host,
            "port": settings.audit_server_port,
            "config": settings.get_safe_dict(),
        }
    )

    uvicorn.run(
        app,
        host=settings.audit_server_host,
        port=settings.audit_server_port,
        log_level=settings.audit_log_level.lower(),
    )


if __name__ == "__main__":
    main()
