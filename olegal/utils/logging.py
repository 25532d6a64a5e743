import logging
import os


def configure_logging(level: str | None = None) -> None:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Return a log-safe preview of *value* (prefix only)."""
    if not value:
        return "none"
    return f"{value[:visible]}..."
