import io
import json
import logging

from capprobe.core.logging_utils import METRICS, JsonFormatter, configure_logging, get_logger


def test_json_formatter_keeps_extra_fields():
    record = logging.LogRecord("capprobe.engine", logging.INFO, __file__, 1, "Done with %d units", (6,), None)
    record.units = 6
    record.path = object()
    entry = json.loads(JsonFormatter().format(record))
    assert entry["msg"] == "Done with 6 units"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "capprobe.engine"
    assert entry["units"] == 6
    assert isinstance(entry["path"], str)
    assert "lineno" not in entry


def test_configure_logging_replaces_handler():
    stream = io.StringIO()
    configure_logging(logging.DEBUG, stream=io.StringIO())
    logger = configure_logging(logging.INFO, stream=stream)
    assert len(logger.handlers) == 1
    get_logger("runner").info("Seek up", extra={"step": 2})
    assert json.loads(stream.getvalue())["step"] == 2
    assert get_logger("runner").name == "capprobe.runner"


def test_metrics_snapshot_and_reset():
    METRICS.counter("seek").inc()
    METRICS.counter("seek").inc(2)
    METRICS.gauge("units_live").set(7)
    assert METRICS.snapshot() == {"seek": 3, "units_live": 7}
    METRICS.reset()
    assert METRICS.snapshot() == {}
