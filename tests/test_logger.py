import logging
import re

import pytest

from dufs.logger import LOGGER_NAME, LineFormatter, init

STAMP = r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:Z|[+-]\d{2}:\d{2})"


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _split_line(text):
    stamp, rest = text.split(" ", 1)
    level, message = rest.split(" - ", 1)
    return stamp, level, message


def test_info_line_in_file(tmp_path):
    log_file = tmp_path / "server.log"
    logger = init(log_file)
    logger.info("hello %s", "world")
    lines = log_file.read_text().splitlines()
    assert len(lines) == 1
    assert re.fullmatch(rf"{STAMP} INFO - hello world", lines[0])


def test_warning_level_name(tmp_path):
    record = logging.LogRecord(LOGGER_NAME, logging.WARNING, __file__, 1, "careful", (), None)
    text = LineFormatter().format(record)
    stamp, level, message = _split_line(text)
    assert level == "WARN"
    assert message == "careful"
    assert re.fullmatch(STAMP, stamp) is not None

    log_file = tmp_path / "server.log"
    logger = init(log_file)
    logger.warning("careful")
    written = log_file.read_text().strip()
    _, file_level, file_message = _split_line(written)
    assert file_level == "WARN"
    assert file_message == "careful"


def test_file_is_appended(tmp_path):
    log_file = tmp_path / "server.log"
    log_file.write_text("old\n")
    logger = init(log_file)
    logger.info("new")
    lines = log_file.read_text().splitlines()
    assert lines[0] == "old"
    assert lines[1].endswith(" - new")


def test_debug_is_filtered(tmp_path):
    log_file = tmp_path / "server.log"
    logger = init(log_file)
    logger.debug("hidden")
    assert log_file.read_text() == ""


def test_console_routing(capsys):
    logger = init()
    logger.info("to stdout")
    logger.error("boom")
    captured = capsys.readouterr()
    assert captured.out.strip().endswith(" - to stdout")
    assert "boom" not in captured.out
    assert re.fullmatch(rf"{STAMP} ERROR - boom", captured.err.strip())


def test_reinit_replaces_handlers(tmp_path):
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"
    init(first)
    logger = init(second)
    logger.info("only second")
    assert first.read_text() == ""
    assert second.read_text().strip().endswith(" - only second")


def test_unopenable_file_raises(tmp_path):
    with pytest.raises(OSError, match="Failed to open the log file"):
        init(tmp_path / "missing" / "server.log")


def test_formatter_renders_message_arguments():
    record = logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, "value %d", (42,), None)
    text = LineFormatter().format(record)
    assert re.fullmatch(rf"{STAMP} \S+ - value 42", text)
    assert text.endswith(" - value 42")