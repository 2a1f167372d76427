import logging
import sys
from pathlib import Path
import datetime
import platform

PACKAGE_LOGGER = 'deconvflow'
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

def _handler(handler, level, formatter):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler

def setup_logging(level="INFO", log_file=None, log_format=None):
    """
    Configure the deconvflow logger for a curation run

    Handlers from a previous call are closed and replaced, so the CLI can
    point each run at its own log file in the output directory.

    Parameters
    ----------
    level : str, optional
        Logging level. Options: 'DEBUG', 'INFO', 'WARNING', 'ERROR'
    log_file : str or Path, optional
        Run log written next to the curated results. If None, logs only to
        stdout
    log_format : str, optional
        Format string for log messages

    Returns
    -------
    logging.Logger
        The 'deconvflow' logger every module logger propagates to
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(numeric_level)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    formatter = logging.Formatter(log_format or DEFAULT_FORMAT)
    logger.addHandler(_handler(logging.StreamHandler(sys.stdout), numeric_level, formatter))

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_handler(logging.FileHandler(log_path), numeric_level, formatter))
        logger.info(f"Writing run log to {log_path}")

    logger.debug(f"deconvflow logging at level {level.upper()}")
    return logger

def format_duration(seconds):
    """Render a duration as '1h 2m 3.00s', '2m 3.00s' or '3.00s'"""
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{int(hours)}h {int(minutes)}m {seconds:.2f}s"
    if minutes:
        return f"{int(minutes)}m {seconds:.2f}s"
    return f"{seconds:.2f}s"

def log_execution_time(logger, start_time=None):
    """
    Start timing a curation step

    Returns a callable that logs the elapsed time when the step ends, e.g.
    ``log_end = log_execution_time(logger)`` ... ``log_end("Curation completed")``.
    """
    start_time = start_time or datetime.datetime.now()

    def log_end(message="Execution completed"):
        elapsed = (datetime.datetime.now() - start_time).total_seconds()
        logger.info(f"{message} in {format_duration(elapsed)}")

    return log_end

def log_system_info(logger):
    """
    Log and return the interpreter and data stack versions of a run

    Parameters
    ----------
    logger : logging.Logger
        Logger to use

    Returns
    -------
    dict
        Component name -> version, stored in the run record
    """
    import numpy as np
    import pandas as pd
    import anndata

    versions = {
        'python': platform.python_version(),
        'numpy': np.__version__,
        'pandas': pd.__version__,
        'anndata': anndata.__version__,
    }
    logger.info("Environment: " + ", ".join(f"{name} {version}" for name, version in versions.items()))
    return versions
