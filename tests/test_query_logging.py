"""Tests for the query/performance logging channels."""

from __future__ import annotations

import logging

from config import LoggingConfig
from query_logging import QueryLogger, format_duration


class TestFormatDuration:
    def test_milliseconds(self):
        assert format_duration(250.7) == "250ms"

    def test_seconds(self):
        assert format_duration(1500) == "1.50s"


class TestQueryLogger:
    def test_query_channel_disabled_by_default(self, caplog):
        log = QueryLogger(logging.getLogger("graphql-mcp.test.off"))
        with caplog.at_level(logging.DEBUG, logger="graphql-mcp.test.off"):
            log.query("{ a }", {"x": 1})
            log.performance("op", 12)
        assert caplog.records == []

    def test_channels_enabled(self, caplog):
        log = QueryLogger(logging.getLogger("graphql-mcp.test.on"), log_queries=True, log_performance=True)
        with caplog.at_level(logging.DEBUG, logger="graphql-mcp.test.on"):
            log.query("{ a }", {"x": 1})
            log.performance("Query analysis", 12, depth=1)
        messages = [record.getMessage() for record in caplog.records]
        assert messages[0] == 'GraphQL query: { a } variables={"x": 1}'
        assert messages[1] == 'Performance: Query analysis took 12ms {"depth": 1}'

    def test_from_config_sets_level(self):
        logger = logging.getLogger("graphql-mcp.test.level")
        log = QueryLogger.from_config(LoggingConfig(level="warn", queries=True), logger)
        assert log.log_queries is True
        assert log.log_performance is False
        assert logger.level == logging.WARNING
