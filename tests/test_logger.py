import json
import logging
from pathlib import Path

from valetclock.utils.logger import JsonFormatter, TextFormatter, get_logger, setup_logger


def _record(fields):
    record = logging.LogRecord("valetclock.test", logging.INFO, __file__, 1, "Login succeeded", None, None)
    record.fields = fields
    return record


def test_get_logger_nests_under_package_root():
    assert get_logger("web.auth_routes").logger.name == "valetclock.web.auth_routes"
    assert get_logger("valetclock.auth").logger.name == "valetclock.auth"


def test_keyword_fields_are_moved_into_extra():
    msg, kwargs = get_logger("test").process("hello", {"user_id": "u1", "exc_info": False})

    assert msg == "hello"
    assert kwargs["exc_info"] is False
    assert kwargs["extra"]["fields"] == {"user_id": "u1"}


def test_json_formatter_includes_fields():
    line = JsonFormatter().format(_record({"user_id": "u1", "destination": "valet_area"}))

    payload = json.loads(line)
    assert payload["message"] == "Login succeeded"
    assert payload["level"] == "INFO"
    assert payload["user_id"] == "u1"
    assert payload["destination"] == "valet_area"


def test_text_formatter_appends_fields():
    line = TextFormatter().format(_record({"user_id": "u1"}))

    assert line.endswith("Login succeeded | user_id=u1")


def test_setup_logger_writes_file(tmp_path: Path):
    log_file = tmp_path / "logs" / "valetclock.log"
    root = setup_logger(log_level="DEBUG", log_format="json", file_path=str(log_file))
    try:
        get_logger("test").info("Session terminated", reason="deactivated")
        for handler in root.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert entry["message"] == "Session terminated"
        assert entry["reason"] == "deactivated"
        assert len(setup_logger(file_path=None).handlers) == 1
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
