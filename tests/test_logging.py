import logging

import pytest
import structlog

import analytics_logging
from analytics_logging import get_logger, install_default_logging


@pytest.fixture
def default_logging():
    saved = structlog.get_config()
    install_default_logging()
    yield
    structlog.configure(**saved)


class TestDefaultLogging:

    def test_routes_through_stdlib(self, default_logging):
        assert isinstance(structlog.get_config()['logger_factory'], structlog.stdlib.LoggerFactory)

    def test_debug_and_info_stay_off_stdout(self, default_logging, capsys, caplog):
        caplog.set_level(logging.WARNING)
        logger = get_logger('survey.quiet')

        logger.debug("Calculating", sample_size=10)
        logger.info("Calculated", sample_size=10)

        assert capsys.readouterr().out == ''
        assert caplog.records == []

    def test_warnings_reach_stdlib_handlers(self, default_logging, capsys, caplog):
        caplog.set_level(logging.WARNING)
        get_logger('survey.quiet').warning("Degraded result", reason='fallback')

        assert capsys.readouterr().out == ''
        assert len(caplog.records) == 1
        assert caplog.records[0].levelno == logging.WARNING

    def test_configure_logging_is_idempotent(self, monkeypatch):
        saved = structlog.get_config()
        monkeypatch.setattr(analytics_logging, '_configured', True)
        try:
            install_default_logging()
            analytics_logging.configure_logging(level='DEBUG', json_output=True)
            # Already configured, so the default chain is left alone
            renderer = structlog.get_config()['processors'][-1]
            assert isinstance(renderer, structlog.dev.ConsoleRenderer)
        finally:
            structlog.configure(**saved)
