"""
Logging Configuration
=====================
Sets up the package logger used by the drivers and solvers.

Two groups of module loggers sit below the package logger:

- ``geomopt.drivers``: energies and gradient norms before and after every
  solve stage, and the optimizer monitor lines, at INFO
- ``geomopt.solvers``: factorization sizes, line-search resets and terminal
  optimizer states, mostly at DEBUG

The solver group can be given its own level, so a run can trace the solvers
without flooding the driver output (or silence them).
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "geomopt"
DRIVER_LOGGER = "geomopt.drivers"
SOLVER_LOGGER = "geomopt.solvers"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    solver_level: Optional[int] = None,
) -> logging.Logger:
    """
    Configures the logger for the 'geomopt' namespace.

    Args:
        level: Level of the package logger (e.g. logging.DEBUG, logging.INFO).
        log_file: Optional path to save logs to a file.
        solver_level: Level of the ``geomopt.solvers`` loggers; ``None``
            makes them follow ``level``.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logging.getLogger(DRIVER_LOGGER).setLevel(logging.NOTSET)
    logging.getLogger(SOLVER_LOGGER).setLevel(logging.NOTSET if solver_level is None else solver_level)

    # Reconfiguring must not stack handlers
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    # Handlers pass everything; the logger levels above do the filtering
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.info(
        f"Logging initialized: package {logging.getLevelName(level)}, "
        f"solvers {logging.getLevelName(logging.getLogger(SOLVER_LOGGER).getEffectiveLevel())}."
    )
    return logger
