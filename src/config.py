from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

APP_NAME = "graphql-mcp"
DEFAULT_ENDPOINT_URL = "http://localhost:4000/graphql"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRIES = 3
LOG_LEVELS = ("error", "warn", "info", "debug")
_REPO_ROOT = Path(__file__).resolve().parent.parent
_ENV_PATHS = [Path.cwd() / ".env", _REPO_ROOT / ".env"]
for _path in _ENV_PATHS:
    if _path.exists():
        load_dotenv(_path, override=True)


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = False
    window_ms: int = 60000
    max: int = 100


@dataclass(frozen=True)
class SecurityConfig:
    max_depth: int = 10
    max_complexity: int = 1000
    allow_introspection: bool = True
    rate_limiting: RateLimitConfig = field(default_factory=RateLimitConfig)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"
    queries: bool = False
    performance: bool = False


@dataclass(frozen=True)
class ServerConfig:
    endpoint: str
    name: str = APP_NAME
    headers: dict[str, str] = field(default_factory=dict)
    default_api_key: str | None = None
    allow_mutations: bool = False
    allow_subscriptions: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retries: int = DEFAULT_RETRIES
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def resolved_headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        has_auth = any(key.lower() == "authorization" for key in headers)
        if self.default_api_key and not has_auth:
            headers["Authorization"] = f"Bearer {self.default_api_key}"
        return headers


def _coerce_headers(value: object, source: str = "headers") -> dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{source} must be a JSON object")
    return {str(key): str(val) for key, val in value.items()}


def _coerce_bool(value: object, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off", ""}:
            return False
    raise ValueError(f"Invalid {name} value: {value!r}")


def _coerce_int(value: object, name: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name} value: {value!r}")
    try:
        result = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name} value: {value!r}") from exc
    if result < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {result}")
    return result


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a JSON object")
    return value


def config_from_dict(raw: dict) -> ServerConfig:
    """
    Build a ServerConfig from the camelCase JSON shape used by config files.

    Missing keys fall back to defaults; malformed values raise ValueError.
    """
    if not isinstance(raw, dict):
        raise ValueError("Configuration must be a JSON object")
    endpoint = raw.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError("endpoint must be a non-empty URL")
    endpoint = endpoint.strip()
    if not endpoint.startswith(("http://", "https://")):
        raise ValueError(f"endpoint must be an http(s) URL: {endpoint}")

    security_raw = _section(raw, "security")
    rate_raw = _section(security_raw, "rateLimiting")
    logging_raw = _section(raw, "logging")

    level = str(logging_raw.get("level", "info")).lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")

    api_key = raw.get("defaultApiKey")
    return ServerConfig(
        endpoint=endpoint,
        name=str(raw.get("name") or APP_NAME),
        headers=_coerce_headers(raw.get("headers")),
        default_api_key=str(api_key) if api_key else None,
        allow_mutations=_coerce_bool(raw.get("allowMutations", False), "allowMutations"),
        allow_subscriptions=_coerce_bool(raw.get("allowSubscriptions", False), "allowSubscriptions"),
        timeout_ms=_coerce_int(raw.get("timeout", DEFAULT_TIMEOUT_MS), "timeout", minimum=1),
        retries=_coerce_int(raw.get("retries", DEFAULT_RETRIES), "retries"),
        security=SecurityConfig(
            max_depth=_coerce_int(security_raw.get("maxDepth", 10), "security.maxDepth", minimum=1),
            max_complexity=_coerce_int(
                security_raw.get("maxComplexity", 1000), "security.maxComplexity", minimum=1
            ),
            allow_introspection=_coerce_bool(
                security_raw.get("allowIntrospection", True), "security.allowIntrospection"
            ),
            rate_limiting=RateLimitConfig(
                enabled=_coerce_bool(rate_raw.get("enabled", False), "security.rateLimiting.enabled"),
                window_ms=_coerce_int(
                    rate_raw.get("windowMs", 60000), "security.rateLimiting.windowMs", minimum=1
                ),
                max=_coerce_int(rate_raw.get("max", 100), "security.rateLimiting.max", minimum=1),
            ),
        ),
        logging=LoggingConfig(
            level=level,
            queries=_coerce_bool(logging_raw.get("queries", False), "logging.queries"),
            performance=_coerce_bool(logging_raw.get("performance", False), "logging.performance"),
        ),
    )


def _load_env_headers() -> dict[str, str]:
    raw_headers = os.environ.get("GRAPHQL_ENDPOINT_HEADERS")
    if not raw_headers:
        return {}
    try:
        parsed = json.loads(raw_headers)
    except json.JSONDecodeError as exc:
        raise ValueError("GRAPHQL_ENDPOINT_HEADERS must be valid JSON") from exc
    return _coerce_headers(parsed, "GRAPHQL_ENDPOINT_HEADERS")


def _env_config_dict() -> dict:
    env = os.environ
    raw: dict = {
        "name": env.get("GRAPHQL_MCP_NAME") or APP_NAME,
        "endpoint": env.get("GRAPHQL_ENDPOINT_URL") or DEFAULT_ENDPOINT_URL,
        "headers": _load_env_headers(),
        "defaultApiKey": env.get("GRAPHQL_API_KEY"),
        "allowMutations": env.get("GRAPHQL_ALLOW_MUTATIONS", "false"),
        "allowSubscriptions": env.get("GRAPHQL_ALLOW_SUBSCRIPTIONS", "false"),
        "timeout": env.get("GRAPHQL_TIMEOUT_MS") or DEFAULT_TIMEOUT_MS,
        "retries": env.get("GRAPHQL_RETRIES") or DEFAULT_RETRIES,
        "security": {
            "maxDepth": env.get("GRAPHQL_MAX_DEPTH") or 10,
            "maxComplexity": env.get("GRAPHQL_MAX_COMPLEXITY") or 1000,
            "allowIntrospection": env.get("GRAPHQL_ALLOW_INTROSPECTION", "true"),
            "rateLimiting": {
                "enabled": env.get("GRAPHQL_RATE_LIMIT_ENABLED", "false"),
                "windowMs": env.get("GRAPHQL_RATE_LIMIT_WINDOW_MS") or 60000,
                "max": env.get("GRAPHQL_RATE_LIMIT_MAX") or 100,
            },
        },
        "logging": {
            "level": env.get("GRAPHQL_LOG_LEVEL") or "info",
            "queries": env.get("GRAPHQL_LOG_QUERIES", "false"),
            "performance": env.get("GRAPHQL_LOG_PERFORMANCE", "false"),
        },
    }
    return raw


def load_config(path: Path | None = None) -> ServerConfig:
    """
    Load server configuration.

    A JSON file is used when `path` is given or GRAPHQL_MCP_CONFIG points at one;
    otherwise the GRAPHQL_* environment variables (and any .env file) apply.
    """
    config_path = path
    if config_path is None and os.environ.get("GRAPHQL_MCP_CONFIG"):
        config_path = Path(os.environ["GRAPHQL_MCP_CONFIG"])
    if config_path is not None:
        try:
            raw = json.loads(config_path.read_text())
        except FileNotFoundError as exc:
            raise ValueError(f"Config file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Config file is not valid JSON: {config_path}") from exc
        return config_from_dict(raw)
    return config_from_dict(_env_config_dict())
