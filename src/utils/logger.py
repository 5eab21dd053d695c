import os
import sys
from collections.abc import Iterable

from loguru import logger

MASK = "***"


def setup_logger(
    *,
    json_logs: bool = False,
    level: str = "INFO",
    log_dir: str = "logs",
    secrets: Iterable[str] = (),
) -> None:
    """Configure loguru for the sniper.

    Console level comes from LOG_LEVEL env, falling back to ``level``. The
    file sink always captures DEBUG so failed buys/sells can be replayed.
    Any string in ``secrets`` is masked in every record before it reaches a
    sink.
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    hidden = [s for s in secrets if s]

    def redact(record) -> None:
        for secret in hidden:
            if secret in record["message"]:
                record["message"] = record["message"].replace(secret, MASK)

    logger.remove()
    logger.configure(patcher=redact)

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level>"
            ),
            level=console_level,
            colorize=True,
        )

    logger.add(
        f"{log_dir}/sniper_{{time:YYYY-MM-DD}}.log",
        rotation="50 MB",
        retention="7 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
        enqueue=True,
    )
