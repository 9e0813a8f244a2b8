import os
import sys

from loguru import logger

# Components whose SUCCESS records are trade/enrollment outcomes
TRADE_TAGS = ("[DISPATCH]", "[MONITOR]", "[SWAP]")


def _is_trade_record(record) -> bool:
    return record["level"].name == "SUCCESS" and record["message"].startswith(TRADE_TAGS)


def setup_logger(*, json_logs: bool = False, level: str = "INFO") -> None:
    """Configure loguru for the sniper process.

    Console level controlled by LOG_LEVEL env (default: INFO).
    The main file always captures DEBUG so every skipped token can be traced;
    a second file keeps only filled trades and enrollments.
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    logger.remove()

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
                "<level>{message}</level>"
            ),
            level=console_level,
            colorize=True,
        )

    logger.add(
        "logs/sniper_{time:YYYY-MM-DD}.log",
        rotation="50 MB",
        retention="7 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )
    logger.add(
        "logs/trades_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {message}",
        filter=_is_trade_record,
        retention="30 days",
        level="SUCCESS",
    )
