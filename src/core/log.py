"""Loguru sink setup shared by applications and scripts."""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(level: str = "DEBUG", sink=None) -> int:
    """
    Replace loguru's default sink with the colored console format.

    Parameters
    ----------
    level : str
        Minimum level to emit.
    sink : optional
        Target sink, ``sys.stderr`` by default.

    Returns
    -------
    int
        Handler id, usable with ``logger.remove``.
    """
    logger.remove()
    return logger.add(
        sink if sink is not None else sys.stderr,
        format=LOG_FORMAT,
        level=level,
    )
