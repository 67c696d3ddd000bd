"""Generic utilities (logging, timing, file handling)."""

import datetime
import logging
import logging.config
import os
import shlex
import time
import typing
from pathlib import Path

from .constants import PROGRAM_NAME
from .exceptions import DataStoreError

logger = logging.getLogger(__name__)


def track_performance(func: typing.Callable, storage: dict = None):
    """Wrapper to track the performance of functions or class methods.

    Parameters
    ----------
    func : callable
        Function to track.
    storage : dict, optional
        Dictionary to store the metrics in, otherwise it is assumed that func is
        part of an instance and metrics will be added to the
        `_performance_metrics` attribute.

    Returns
    -------
    callable
        Wrapped function or class method.

    """
    label = func.__qualname__

    def _timed_func(*args, **kwargs):
        self = None
        if storage is None:
            self = args[0]
            if not hasattr(self, "_performance_metrics"):
                setattr(self, "_performance_metrics", {})

        t0 = time.perf_counter()
        output = func(*args, **kwargs)
        td = time.perf_counter() - t0

        metrics = (storage if self is None else self._performance_metrics).setdefault(
            label,
            {
                "count": 0,
                "total": 0.0,
                "min": 9e99,
                "max": -1.0,
            },
        )
        metrics["count"] += 1
        metrics["total"] += td
        metrics["min"] = min(td, metrics["min"])
        metrics["max"] = max(td, metrics["max"])

        return output

    _timed_func.__name__ = func.__name__
    _timed_func.__doc__ = func.__doc__
    return _timed_func


def format_performance(obj, indent: str = "\t", p: int = 3):
    """Format the performance results from `track_performance`.

    Stages are listed in the order they first ran.

    Parameters
    ----------
    obj : instance or dict
        Dictionary of the performance metrics or instance with the automated
        `_performance_metrics` attribute.
    indent : str, optional
        String used for indentation. Default is tab.
    p : int, optional
        Decimal precision in timing format. Default is 3, aka milliseconds.

    Returns
    -------
    str
        Formatted performance results.

    """
    metrics = obj if isinstance(obj, dict) else getattr(obj, "_performance_metrics", None)
    if metrics is None:
        raise ValueError(f"Unable to report performance metrics missing for: {obj}")

    lines = ["Performance Summary:"]
    for label, stats in metrics.items():
        mean = stats["total"] / stats["count"]
        lines.append(f"{indent}{label} (x{stats['count']})")
        lines.append(
            f"{indent * 2}total={stats['total']:.{p}f}s"
            f" min={stats['min']:.{p}f}s mean={mean:.{p}f}s max={stats['max']:.{p}f}s"
        )
    return "\n".join(lines)


def get_command(argv: typing.Sequence[str]) -> str:
    """Render command line arguments as a single shell-quoted string."""
    return " ".join(shlex.quote(str(arg)) for arg in argv)


def file_rename(old: typing.Union[str, Path], new: typing.Union[str, Path]):
    """Atomically rename `old` onto `new`, replacing `new` if it exists.

    Raises
    ------
    DataStoreError
        If the rename fails.

    """
    try:
        os.replace(old, new)
    except OSError as e:
        raise DataStoreError(f'Could not rename "{old}" to "{new}": {e.strerror}') from e
    logger.debug("Renamed [%s] -> [%s]", old, new)


def remove_quietly(path: typing.Union[str, Path]) -> bool:
    """Remove a file if it exists. Returns True if something was removed."""
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError:
        logger.exception("Unable to remove file [%s]:", path)
        return False
    logger.debug("Removed [%s]", path)
    return True


def enable_logging(
    log_level=logging.DEBUG, log_file: typing.Union[bool, str, Path] = False, extra_loggers: list[str] = None
):
    """Enable logging to the console and optionally to a file.

    Parameters
    ----------
    log_level : int or str
        A logging log level.
    log_file : bool or str or Path, optional
        Option to enable logging to a file. If true or a directory the filename
        will be auto-generated. If true, the file will be saved to the current
        working directory. Otherwise, the supplied file will be used.
    extra_loggers : List[str], optional
        Collection of additional loggers to enable at DEBUG level.

    Returns
    -------
    logging.Logger
        The package logger.

    """
    if isinstance(log_level, str):
        log_level = log_level.upper()
    root_level = "DEBUG" if log_file else logging.getLevelName(log_level)
    if isinstance(root_level, int):
        root_level = logging.getLevelName(root_level)
    extra_loggers = {} if not extra_loggers else {name: {"level": root_level} for name in extra_loggers}

    log_config = {
        "version": 1,
        "disable_existing_loggers": True,
        "formatters": {
            "simple": {
                "class": "logging.Formatter",
                "format": "[%(asctime)s.%(msecs)03d] %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
            "detailed": {
                "class": "logging.Formatter",
                "format": "[%(asctime)s.%(msecs)03d %(name)s.%(funcName)s:%(lineno)i %(levelname)5.5s] %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "level": log_level,
                "class": "logging.StreamHandler",
                "formatter": "simple",
                "stream": "ext://sys.stdout",
            },
            "file": {"class": "logging.NullHandler"},
        },
        "loggers": dict(
            **{
                "regridll": {"level": root_level},
                "netCDF4": {"level": "ERROR"},
            },
            **extra_loggers,
        ),
        "root": {"level": root_level, "handlers": ["console", "file"]},
    }

    if log_file:
        log_file = log_file_path(log_file)
        log_config["handlers"]["file"] = {
            "level": root_level,
            "class": "logging.FileHandler",
            "formatter": "detailed",
            "filename": str(log_file),
            "mode": "a",
        }

    logging.config.dictConfig(log_config)
    if log_file:
        logger.debug("Logging to file: %s", log_file)
    return logging.getLogger("regridll")


def log_file_path(log_file: typing.Union[bool, str, Path]) -> Path:
    """Resolve the `log_file` option of `enable_logging` to a file path.

    True means a time-stamped file in the current directory, a directory gets
    a time-stamped file inside it, anything else is used as given.
    """
    path = Path.cwd() if log_file is True else Path(log_file)
    if path.is_dir():
        stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%S")
        path = path / f"{PROGRAM_NAME}.{stamp}.log"
    return path
