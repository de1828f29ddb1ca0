"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from labmarket import __version__
from labmarket.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings, app=None) -> bool:
    """
    Initialize Logfire once at startup.

    Configures Logfire cloud tracking, bridges Python logging to it and, when
    a FastAPI ``app`` is given, instruments its request handling.

    Args:
        settings: Application settings containing the Logfire token
        app: Optional FastAPI application to instrument

    Returns:
        True if Logfire was configured, False if it was skipped or failed.
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="labmarket",
            service_version=__version__,
            environment=settings.environment,
        )

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        if app is not None:
            logfire.instrument_fastapi(app)

        logger.info("Logfire cloud tracking initialized")
        return True

    except Exception as e:
        # Observability is optional; the ledger keeps running without it.
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False
