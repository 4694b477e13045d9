import importlib
import json
import logging
import warnings

import pytest

from cronq import log


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_format_emits_one_object_per_record(capsys):
    log.setup_logger("json", "debug")
    logging.getLogger("cronq.test").info("claimed %d", 3)

    record = json.loads(capsys.readouterr().err.strip())
    assert record["message"] == "claimed 3"
    assert record["level"] == "INFO"
    assert record["name"] == "cronq.test"
    assert "timestamp" in record


def test_text_format_and_level(capsys):
    log.setup_logger("text", "warning")
    logging.getLogger("cronq.test").info("hidden")
    logging.getLogger("cronq.test").warning("shown")

    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "cronq.test - WARNING - shown" in err


def test_json_formatter_comes_from_the_current_module():
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        importlib.reload(log)
        root = log.setup_logger("json")
    assert type(root.handlers[0].formatter).__module__ == "pythonjsonlogger.json"
