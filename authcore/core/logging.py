# authcore/core/logging.py
import sys

from loguru import logger

from .config import Settings


def configure_logging(settings: Settings) -> None:
    """Substitui o sink padrão do loguru por um único sink em stderr."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        serialize=settings.LOG_JSON,
        backtrace=False,
        diagnose=False,  # nunca despejar variáveis locais (senhas, tokens) em tracebacks
    )


def mask_token(token: str | None) -> str:
    if not token:
        return "<empty>"
    return f"{token[:8]}..."
