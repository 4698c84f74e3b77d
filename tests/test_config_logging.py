"""
Tests for configuration and structured logging
"""

import io
import json
import sys
import logging
import pytest
from decimal import Decimal
from pydantic import ValidationError

from loan_engine import config as config_module
from loan_engine.config import LoanEngineConfig, get_config, reload_config
from loan_engine.logging_config import (
    JSONFormatter, setup_logging, get_logger, log_action
)


class TestLoanEngineConfig:
    """Test settings defaults, validation and environment overrides"""

    def test_defaults(self):
        config = LoanEngineConfig(_env_file=None)

        assert config.database_url == "memory://"
        assert config.log_level == "INFO"
        assert config.log_format == "json"
        assert config.guard_precision == 28
        assert config.min_tenure_months == 12
        assert config.max_tenure_months == 360
        assert config.enforce_eligibility is True
        assert config.due_day_of_month == 1
        assert config.clamp_outstanding_balance is True
        assert config.enable_audit_logging is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOAN_ENGINE_DATABASE_URL", "sqlite:///loans.db")
        monkeypatch.setenv("LOAN_ENGINE_GUARD_PRECISION", "34")
        monkeypatch.setenv("LOAN_ENGINE_ENFORCE_ELIGIBILITY", "false")
        monkeypatch.setenv("loan_engine_due_day_of_month", "15")

        config = LoanEngineConfig(_env_file=None)

        assert config.database_url == "sqlite:///loans.db"
        assert config.guard_precision == 34
        assert config.enforce_eligibility is False
        assert config.due_day_of_month == 15

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("LOAN_ENGINE_MAX_TENURE_MONTHS=120\nUNRELATED=1\n")

        config = LoanEngineConfig(_env_file=env_file)
        assert config.max_tenure_months == 120

    def test_guard_precision_minimum(self):
        with pytest.raises(ValidationError, match="guard_precision"):
            LoanEngineConfig(guard_precision=16)

    @pytest.mark.parametrize("day", [0, 32])
    def test_due_day_range(self, day):
        with pytest.raises(ValidationError):
            LoanEngineConfig(due_day_of_month=day)

    def test_log_format(self):
        assert LoanEngineConfig(log_format="TEXT").log_format == "text"
        with pytest.raises(ValidationError):
            LoanEngineConfig(log_format="xml")

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("LOAN_ENGINE_LOG_LEVEL", "DEBUG")
        try:
            reloaded = reload_config()
            assert reloaded.log_level == "DEBUG"
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestJSONFormatter:
    """Test structured log records"""

    def make_record(self, message="hello", **attributes):
        record = logging.LogRecord("loan_engine.test", logging.INFO, __file__, 1, message, (), None)
        for key, value in attributes.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        payload = json.loads(JSONFormatter().format(self.make_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "loan_engine.test"
        assert payload["message"] == "hello"
        assert payload["service"] == "loan_engine"
        assert "timestamp" in payload

    def test_decimal_extra_serialized(self):
        record = self.make_record(extra={"amount_paid": Decimal('10746.95')})
        payload = json.loads(JSONFormatter(service="loans-api").format(record))

        assert payload["service"] == "loans-api"
        assert payload["extra"] == {"amount_paid": "10746.95"}

    def test_none_values_dropped(self):
        payload = json.loads(JSONFormatter().format(self.make_record()))

        assert "action" not in payload
        assert "correlation_id" not in payload
        assert "extra" not in payload

    def test_structured_fields(self):
        record = self.make_record(action="loan.approved", resource="loan:L1",
                                  correlation_id="c-1", extra={"remarks": "ok"})
        payload = json.loads(JSONFormatter().format(record))

        assert payload["action"] == "loan.approved"
        assert payload["resource"] == "loan:L1"
        assert payload["correlation_id"] == "c-1"
        assert payload["extra"] == {"remarks": "ok"}

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("loan_engine.test", logging.ERROR, __file__, 1,
                                       "failed", (), sys.exc_info())

        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in payload["exception"]


class TestSetupLogging:
    """Test logger configuration"""

    def test_json_handler(self):
        logger = setup_logging("DEBUG", "loan_engine", "json")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False

    def test_text_handler(self):
        logger = setup_logging("WARNING", "loan_engine", "text")

        assert logger.level == logging.WARNING
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_writes_json_lines_to_stream(self):
        stream = io.StringIO()
        logger = setup_logging("INFO", "loan_engine", "json", stream=stream)

        get_logger("loan_engine.loans").info("Loan created")
        logger.debug("not emitted")

        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["logger"] == "loan_engine.loans"

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging()
        logger = setup_logging()

        assert len(logger.handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        assert setup_logging("CHATTY").level == logging.INFO

    def test_get_logger(self):
        assert get_logger("loan_engine.loans").name == "loan_engine.loans"
        assert get_logger().name == "loan_engine"


class TestLogAction:
    """Test structured action logging"""

    def test_attaches_structured_fields(self, caplog):
        logger = get_logger("loan_engine.test")

        with caplog.at_level(logging.INFO, logger="loan_engine.test"):
            log_action(logger, "info", "Loan approved", action="loan.approved",
                       resource="loan:L1", correlation_id="c-1", extra={"remarks": "ok"})

        (record,) = caplog.records
        assert record.getMessage() == "Loan approved"
        assert record.action == "loan.approved"
        assert record.resource == "loan:L1"
        assert record.extra == {"remarks": "ok"}

    def test_respects_level(self, caplog):
        logger = get_logger("loan_engine.test")

        with caplog.at_level(logging.WARNING, logger="loan_engine.test"):
            log_action(logger, "info", "ignored", action="noop")

        assert caplog.records == []

    def test_warning_level(self, caplog):
        logger = get_logger("loan_engine.test")

        with caplog.at_level(logging.INFO, logger="loan_engine.test"):
            log_action(logger, "warning", "Overpayment", action="payment.overpaid")

        assert caplog.records[0].levelname == "WARNING"
