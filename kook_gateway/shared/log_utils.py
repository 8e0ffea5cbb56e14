import sys

from loguru import logger


def configure_logging(level: str = "INFO") -> None:
    """
    Replaces loguru's default stderr handler with one at `level`.
    The CLI calls this once before starting a client or the mock server.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {message}",
    )


def log_connection(role: str, client_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a connection lifecycle step.
    Writes: role, client_id and any extra fields as key=value pairs.
    """
    log_str = f"role={role} client_id={client_id}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)


def loguru_debug_sink(message: str) -> None:
    """Default debug sink for the gateway client."""
    logger.debug(message)
