# native imports
import json
import logging
import os
import time
import traceback
import typing
from datetime import datetime, timedelta

# global variable which tracks if any logger has been initiated
__is_initiated__ = False

# level 21 is just above INFO (20)
# added at load time so that .progress() is available even if no logger is instantiated
PROGRESS_LEVELV_NUM = 21
logging.PROGRESS = PROGRESS_LEVELV_NUM
logging.addLevelName(PROGRESS_LEVELV_NUM, "PROGRESS")


def progress(self, message, *args, **kws):
    if self.isEnabledFor(PROGRESS_LEVELV_NUM):
        self._log(PROGRESS_LEVELV_NUM, message, args, **kws)


logging.Logger.progress = progress


class DefaultFormatter(logging.Formatter):
    template = "%(levelname)s: %(message)s"

    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    green = "\x1b[32;20m"
    reset = "\x1b[0m"

    def __init__(self, use_ansi: bool = True):
        """
        Formatter prefixing every record with the elapsed time and optionally coloring it by level.

        Parameters
        ----------

        use_ansi : bool, default True
            Whether to use ANSI escape codes to color the output.

        """
        super().__init__()
        self.start_time = time.time()

        colors = {
            logging.DEBUG: "",
            logging.INFO: "",
            logging.PROGRESS: self.green,
            logging.WARNING: self.yellow,
            logging.ERROR: self.red,
            logging.CRITICAL: self.bold_red,
        }
        self.formatter = {}
        for level, color in colors.items():
            if use_ansi and color:
                self.formatter[level] = logging.Formatter(
                    color + self.template + self.reset
                )
            else:
                self.formatter[level] = logging.Formatter(self.template)

    def format(self, record: logging.LogRecord):
        """Format the log record.

        Parameters
        ----------

        record : logging.LogRecord
            Log record to format.

        Returns
        -------
        str
            Formatted log record.
        """
        elapsed = timedelta(seconds=record.created - self.start_time)
        formatter = self.formatter.get(record.levelno, self.formatter[logging.INFO])

        return f"{elapsed} {formatter.format(record)}"


def init_logging(
    log_folder: str = None, log_level: int | str = logging.INFO, overwrite: bool = True
):
    """Initialize the root logger with a console handler and, optionally, a `log.txt` file handler.

    Parameters
    ----------

    log_folder : str, default None
        Folder where the log file will be saved. If None, no log file is written.

    log_level : int or str, default logging.INFO
        Log level to use, either as logging constant or as level name.

    overwrite : bool, default True
        Whether to overwrite the log file if it already exists.
    """

    global __is_initiated__

    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())

    logger = logging.getLogger()
    logger.handlers = []
    logger.setLevel(log_level)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(DefaultFormatter(use_ansi=True))
    logger.addHandler(ch)

    if log_folder is not None:
        os.makedirs(log_folder, exist_ok=True)
        log_name = os.path.join(log_folder, "log.txt")
        if os.path.exists(log_name) and overwrite:
            os.remove(log_name)
        fh = logging.FileHandler(log_name, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(DefaultFormatter(use_ansi=False))
        logger.addHandler(fh)

    __is_initiated__ = True


class Backend:
    """Generic backend for logging metrics, strings, data and events of an evaluation run.

    Subclasses implement their own logic for writing the values to a file or to the log.
    If the backend requires a context, it implements `__enter__` and `__exit__`, which the `Pipeline` calls
    when entering and leaving the context of a run.
    """

    REQUIRES_CONTEXT = False

    def log_metric(self, name: str, value: float, *args, **kwargs):
        pass

    def log_string(self, value: str, *args, **kwargs):
        pass

    def log_data(self, name: str, value: typing.Any, *args, **kwargs):
        pass

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        pass


class JSONLBackend(Backend):
    EVENTS_PATH = "events.jsonl"
    REQUIRES_CONTEXT = True

    def __init__(self, path=None) -> None:
        """Backend which writes metrics, strings and events to a JSONL file.

        Important: This backend only writes while it is in a context.

        Parameters
        ----------

        path : str, default None
            Folder where the output will be saved as `events.jsonl`. If None, an error will be raised.

        """
        self.path = path

        if self.path is None:
            raise ValueError(
                "JSONLBackend requires an output folder to be set with the path parameter."
            )

        self.events_path = os.path.join(self.path, self.EVENTS_PATH)
        self.entered_context = False
        self.start_time = 0

    def absolute_time(self):
        """Current time as an ISO 8601 string."""
        return datetime.now().isoformat()

    def relative_time(self):
        """Seconds since the context was entered."""
        return datetime.now().timestamp() - self.start_time

    def __enter__(self):
        """Create an empty `events.jsonl` file and write a `start` event to it."""
        self.entered_context = True
        self.start_time = datetime.now().timestamp()

        with open(self.events_path, "w"):
            pass

        self.log_event("start", {})
        return self

    def __exit__(
        self, exc_type: typing.Any, exc_value: typing.Any, exc_traceback: typing.Any
    ):
        """Write a `stop` event, including the traceback if the context was left with an exception."""
        if exc_type is not None:
            exc_str = "".join(
                traceback.format_exception(exc_type, exc_value, exc_traceback)
            )
            self.log_event("stop", {"error": exc_str})
        else:
            self.log_event("stop", {})

        self.entered_context = False
        self.start_time = 0

    def _write(self, message_type: str, name: str, value: typing.Any, verbosity=0):
        if not self.entered_context:
            return

        with open(self.events_path, "a") as f:
            message = {
                "absolute_time": self.absolute_time(),
                "relative_time": self.relative_time(),
                "type": message_type,
                "name": name,
                "value": value,
                "verbosity": verbosity,
            }
            f.write(json.dumps(message) + "\n")

    def log_event(self, name: str, value: typing.Any):
        """Log an event, `value` must be JSON-serializable."""
        self._write("event", name, value)

    def log_metric(self, name: str, value: float):
        self._write("metric", name, value)

    def log_string(self, value: str, verbosity: str = "info"):
        self._write("string", "string", value, verbosity=verbosity)

    def log_data(self, name: str, value: typing.Any):
        """Log structured data, `value` must be JSON-serializable."""
        self._write("data", name, value)


class LogBackend(Backend):
    def __init__(self, path: str = None) -> None:
        if not __is_initiated__ or path is not None:
            init_logging(path)

        self.logger = logging.getLogger()
        super().__init__()

    def log_string(self, value: str, verbosity: str = "info"):
        if verbosity == "progress":
            self.logger.progress(value)
        elif verbosity == "info":
            self.logger.info(value)
        elif verbosity == "debug":
            self.logger.debug(value)
        elif verbosity == "warning":
            self.logger.warning(value)
        elif verbosity == "error":
            self.logger.error(value)
        elif verbosity == "critical":
            self.logger.critical(value)
        else:
            raise ValueError(f"Unknown verbosity level {verbosity}")

    def log_metric(self, name: str, value: float):
        self.logger.info(f"{name}: {value}")


class Pipeline:
    def __init__(
        self,
        backends: list[Backend] = None,
    ):
        """Logs metrics, strings, data and events to multiple backends.

        Parameters
        ----------

        backends : list of Backend, default []
            Backend instances to forward every call to.
        """
        if backends is None:
            backends = []
        self.backends = backends

    def __enter__(self):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        for backend in self.backends:
            if backend.REQUIRES_CONTEXT:
                backend.__exit__(exc_type, exc_value, exc_traceback)

    def log_metric(self, name: str, value: float, *args, **kwargs):
        for backend in self.backends:
            backend.log_metric(name, value, *args, **kwargs)

    def log_string(self, value: str, *args, verbosity="info", **kwargs):
        for backend in self.backends:
            backend.log_string(value, *args, verbosity=verbosity, **kwargs)

    def log_data(self, name: str, value: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_data(name, value, *args, **kwargs)

    def log_event(self, name: str, value: typing.Any, *args, **kwargs):
        for backend in self.backends:
            backend.log_event(name, value, *args, **kwargs)
