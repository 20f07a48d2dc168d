import logging
import platform
import socket
from datetime import datetime
from typing import TYPE_CHECKING, Any

import alphabase
import numpy as np
import pandas as pd
import yaml

import alphalipid
from alphalipid.reporting import reporting  # noqa: F401

# the progress method is added in reporting.py at module load time
if TYPE_CHECKING:

    class _ExtendedLogger(logging.Logger):
        def progress(self, message: str, *args: Any, **kws: Any) -> None: ...

    logger: _ExtendedLogger = logging.getLogger()  # type: ignore[assignment]
else:
    logger = logging.getLogger()


def print_logo() -> None:
    """Print the alphalipid logo and version."""
    logger.progress("          _      _         _ _       _    _ ")
    logger.progress("     __ _| |_ __| |_  __ _| (_)_ __ (_)__| |")
    logger.progress("    / _` | | '_ \\ ' \\/ _` | | | '_ \\| / _` |")
    logger.progress("    \\__,_|_| .__/_||_\\__,_|_|_| .__/|_\\__,_|")
    logger.progress("           |_|               |_|            ")
    logger.progress("")
    logger.progress(f"version: {alphalipid.__version__}")


def print_environment() -> None:
    """Log information about the python environment."""

    logger.info(f"hostname: {socket.gethostname()}")
    logger.progress(
        f"os: {platform.system()} {platform.release()} ({platform.machine()})"
    )
    logger.progress(
        f"python: {platform.python_version()} ({platform.python_implementation()})"
    )

    now = datetime.today().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"date: {now}")

    logger.info("================== Environment ==================")
    logger.info(f"{'alphabase':<15} : {alphabase.__version__}")
    logger.info(f"{'numpy':<15} : {np.__version__}")
    logger.info(f"{'pandas':<15} : {pd.__version__}")
    logger.info(f"{'pyyaml':<15} : {yaml.__version__}")
    logger.info("=================================================")
