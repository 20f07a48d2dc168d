import json
import logging
import os
import sys
import time

import pytest
from conftest import random_tempfolder

from alphalipid.reporting import reporting


@pytest.mark.skipif(sys.platform == "win32", reason="does not run on windows")
def test_logging():
    reporting.__is_initiated__ = False

    tempfolder = random_tempfolder()

    if os.path.exists(os.path.join(tempfolder, "log.txt")):
        os.remove(os.path.join(tempfolder, "log.txt"))

    reporting.init_logging(tempfolder)

    python_logger = logging.getLogger()
    python_logger.progress("test")
    python_logger.info("test")
    python_logger.warning("test")
    python_logger.error("test")
    python_logger.critical("test")

    assert os.path.exists(os.path.join(tempfolder, "log.txt"))
    with open(os.path.join(tempfolder, "log.txt")) as f:
        assert len(f.readlines()) == 5
    time.sleep(1)
    os.remove(os.path.join(tempfolder, "log.txt"))


@pytest.mark.skipif(sys.platform == "win32", reason="does not run on windows")
def test_logging_level_name():
    reporting.__is_initiated__ = False

    tempfolder = random_tempfolder()

    # when
    reporting.init_logging(tempfolder, log_level="warning")

    python_logger = logging.getLogger()
    python_logger.info("test")
    python_logger.progress("test")
    python_logger.warning("test")

    assert python_logger.level == logging.WARNING
    with open(os.path.join(tempfolder, "log.txt")) as f:
        assert len(f.readlines()) == 1
    os.remove(os.path.join(tempfolder, "log.txt"))


def test_default_formatter_without_ansi():
    formatter = reporting.DefaultFormatter(use_ansi=False)
    record = logging.LogRecord(
        "alphalipid", logging.WARNING, __file__, 1, "careful", None, None
    )

    # when
    line = formatter.format(record)

    assert line.endswith("WARNING: careful")
    assert "\x1b[" not in line


def test_backend():
    reporting.__is_initiated__ = False

    backend = reporting.Backend()
    backend.log_event("start_evaluation", None)
    backend.log_metric("unresolved_head_fragments", 0)
    backend.log_string("test")
    backend.log_data("test", None)


def test_jsonl_backend():
    reporting.__is_initiated__ = False

    tempfolder = random_tempfolder()

    with reporting.JSONLBackend(path=tempfolder) as jsonl_backend:
        jsonl_backend.log_event("start_evaluation", None)
        jsonl_backend.log_metric("unresolved_head_fragments", 0)
        jsonl_backend.log_string("test")

    assert os.path.exists(os.path.join(tempfolder, "events.jsonl"))
    with open(os.path.join(tempfolder, "events.jsonl")) as f:
        lines = [json.loads(line) for line in f]
    assert len(lines) == 5
    assert [line["type"] for line in lines] == [
        "event",
        "event",
        "metric",
        "string",
        "event",
    ]
    time.sleep(1)
    os.remove(os.path.join(tempfolder, "events.jsonl"))


def test_jsonl_backend_writes_only_in_context():
    tempfolder = random_tempfolder()

    jsonl_backend = reporting.JSONLBackend(path=tempfolder)

    # when
    jsonl_backend.log_string("test")

    assert not os.path.exists(os.path.join(tempfolder, "events.jsonl"))


def test_jsonl_backend_logs_error_on_exception():
    tempfolder = random_tempfolder()

    # when
    with pytest.raises(RuntimeError):
        with reporting.JSONLBackend(path=tempfolder):
            raise RuntimeError("evaluation failed")

    with open(os.path.join(tempfolder, "events.jsonl")) as f:
        lines = [json.loads(line) for line in f]
    assert lines[-1]["name"] == "stop"
    assert "evaluation failed" in lines[-1]["value"]["error"]
    os.remove(os.path.join(tempfolder, "events.jsonl"))


def test_jsonl_backend_requires_path():
    with pytest.raises(ValueError):
        reporting.JSONLBackend()


@pytest.mark.skipif(sys.platform == "win32", reason="does not run on windows")
def test_log_backend():
    reporting.__is_initiated__ = False

    tempfolder = random_tempfolder()

    if os.path.exists(os.path.join(tempfolder, "log.txt")):
        os.remove(os.path.join(tempfolder, "log.txt"))

    stdout_backend = reporting.LogBackend(path=tempfolder)
    stdout_backend.log_string("test", verbosity="progress")
    stdout_backend.log_string("test", verbosity="info")
    stdout_backend.log_string("test", verbosity="warning")
    stdout_backend.log_string("test", verbosity="error")
    stdout_backend.log_string("test", verbosity="critical")

    assert os.path.exists(os.path.join(tempfolder, "log.txt"))
    with open(os.path.join(tempfolder, "log.txt")) as f:
        assert len(f.readlines()) == 5
    os.remove(os.path.join(tempfolder, "log.txt"))


def test_log_backend_unknown_verbosity_raises():
    backend = reporting.LogBackend()

    with pytest.raises(ValueError):
        backend.log_string("test", verbosity="loud")


@pytest.mark.skipif(sys.platform == "win32", reason="does not run on windows")
def test_pipeline():
    reporting.__is_initiated__ = False

    tempfolder = random_tempfolder()

    pipeline = reporting.Pipeline(
        backends=[
            reporting.LogBackend(path=tempfolder),
            reporting.JSONLBackend(path=tempfolder),
        ]
    )

    with pipeline:
        pipeline.log_event("start_evaluation", None)
        pipeline.log_metric("unresolved_head_fragments", 0)
        pipeline.log_string("test")
        pipeline.log_data("report", {"verdict": True})

    assert os.path.exists(os.path.join(tempfolder, "log.txt"))
    assert os.path.exists(os.path.join(tempfolder, "events.jsonl"))
    with open(os.path.join(tempfolder, "events.jsonl")) as f:
        assert len(f.readlines()) == 6

    os.remove(os.path.join(tempfolder, "log.txt"))
    os.remove(os.path.join(tempfolder, "events.jsonl"))

    # sleep 1 second to ensure that the file has been deleted
    time.sleep(1)
