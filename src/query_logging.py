from __future__ import annotations

import json
import logging

from config import APP_NAME, LoggingConfig

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=_LEVELS.get(str(level).lower(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def format_duration(duration_ms: float) -> str:
    if duration_ms < 1000:
        return f"{int(duration_ms)}ms"
    return f"{duration_ms / 1000:.2f}s"


class QueryLogger:
    """
    Logger handed to the client and tool handlers at construction time.

    Wraps a stdlib logger and adds the opt-in query and performance channels.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        log_queries: bool = False,
        log_performance: bool = False,
    ):
        self.logger = logger or logging.getLogger(APP_NAME)
        self.log_queries = log_queries
        self.log_performance = log_performance

    @classmethod
    def from_config(cls, config: LoggingConfig, logger: logging.Logger | None = None) -> "QueryLogger":
        query_logger = cls(logger, log_queries=config.queries, log_performance=config.performance)
        query_logger.logger.setLevel(_LEVELS.get(config.level, logging.INFO))
        return query_logger

    def debug(self, message: str, *args) -> None:
        self.logger.debug(message, *args)

    def info(self, message: str, *args) -> None:
        self.logger.info(message, *args)

    def warning(self, message: str, *args) -> None:
        self.logger.warning(message, *args)

    def error(self, message: str, *args) -> None:
        self.logger.error(message, *args)

    def query(self, query: str, variables: dict | None = None) -> None:
        if self.log_queries:
            self.logger.debug("GraphQL query: %s variables=%s", query, _dump(variables))

    def performance(self, operation: str, duration_ms: float, /, **meta) -> None:
        if self.log_performance:
            self.logger.info(
                "Performance: %s took %s %s",
                operation,
                format_duration(duration_ms),
                _dump(meta),
            )


def _dump(value: object) -> str:
    try:
        return json.dumps(value, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return repr(value)
