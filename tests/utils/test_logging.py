import logging

from emberorm.utils.logging import (
    CorrelationIdFilter,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    time_call,
)


def test_correlation_id_round_trip():
    token = set_correlation_id("test-token")
    assert token == "test-token"
    assert get_correlation_id() == "test-token"
    generated = set_correlation_id()
    assert generated != "test-token"
    assert get_correlation_id() == generated


def test_filter_stamps_records():
    set_correlation_id("stamped")
    record = logging.LogRecord("emberorm.tests", logging.INFO, __file__, 1, "msg", (), None)
    assert CorrelationIdFilter().filter(record)
    assert record.correlation_id == "stamped"


def test_loggers_live_under_package_namespace():
    logger = get_logger("tests.namespace")
    assert logger.name == "emberorm.tests.namespace"
    assert logging.getLogger("emberorm").handlers


def test_time_call_logs_duration(caplog):
    logger = get_logger("tests.logging")
    caplog.set_level(logging.DEBUG, logger=logger.name)
    with time_call("unit-test", logger, threshold_ms=0) as timer:
        pass
    assert timer.elapsed_ms >= 0
    records = [record for record in caplog.records if record.name == logger.name]
    assert any("unit-test took" in record.message for record in records)
    assert records[-1].levelno == logging.WARNING


def test_fast_calls_log_at_debug(caplog):
    logger = get_logger("tests.logging.fast")
    caplog.set_level(logging.DEBUG, logger=logger.name)
    with time_call("quick", logger, sql="SELECT 1", threshold_ms=60_000):
        pass
    records = [record for record in caplog.records if record.name == logger.name]
    assert records[-1].levelno == logging.DEBUG
    assert records[-1].sql == "SELECT 1"
