"""
GraphQL MCP server exposing `introspect-schema`, `query-graphql` and `analyze-query` tools
for one remote GraphQL endpoint.

What it does:
- Introspects the endpoint, caches the schema (versioned by SDL hash) and validates
  every query against it before sending.
- Retries failed requests with exponential backoff and reports timing metrics.
- Blocks mutations/subscriptions unless enabled, and enforces depth, complexity
  and rate limits from the security config.

Startup notes:
- Configuration comes from a JSON file (--config / GRAPHQL_MCP_CONFIG) or GRAPHQL_* env vars.
- The schema is introspected once at startup when introspection is allowed; a failure
  is logged and the server still starts (queries then go out unvalidated).
- Supports stdio/SSE/HTTP transports configured via env or CLI flags.
"""

import asyncio
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Literal

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from config import APP_NAME, ServerConfig, load_config
from graphql_client import Endpoint, GraphQLClient
from graphql_errors import GraphQLToolError
from query_logging import QueryLogger, configure_logging
from schema_cache import SchemaCache
from tool_handlers import ANALYZE_QUERY, INTROSPECT_SCHEMA, QUERY_GRAPHQL, GraphQLToolHandlers, ToolResponse

DEFAULT_TRANSPORT = os.environ.get("MCP_TRANSPORT", os.environ.get("FASTMCP_TRANSPORT", "stdio"))
DEFAULT_INSTRUCTIONS = (
    "This server is a gateway to a single GraphQL API. Call introspect-schema first to learn the "
    "available types and root fields, use analyze-query to check a query's depth and complexity, "
    "then call query-graphql with one valid operation. Use dryRun to validate without executing."
)
MCP_INSTRUCTIONS = os.environ.get("MCP_INSTRUCTIONS", DEFAULT_INSTRUCTIONS)

logger = logging.getLogger(APP_NAME)


def _parse_headers(raw_headers: list[str] | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw in raw_headers or []:
        if ":" not in raw:
            raise ValueError(f"Invalid header (expected 'Name: Value'): {raw}")
        name, value = raw.split(":", 1)
        name = name.strip()
        value = value.strip()
        if not name:
            raise ValueError(f"Invalid header name in: {raw}")
        headers[name] = value
    return headers


def build_handlers(config: ServerConfig, *, transport=None) -> GraphQLToolHandlers:
    log = QueryLogger.from_config(config.logging)
    client = GraphQLClient(
        Endpoint(
            url=config.endpoint,
            headers=config.resolved_headers(),
            timeout_ms=config.timeout_ms,
            max_retries=config.retries,
        ),
        schema_cache=SchemaCache(),
        log=log,
        transport=transport,
    )
    return GraphQLToolHandlers(client, config, log=log)


def _unwrap(response: ToolResponse) -> str:
    if response.is_error:
        raise ToolError(response.to_text())
    return response.to_text()


def create_server(config: ServerConfig, handlers: GraphQLToolHandlers | None = None) -> FastMCP:
    handlers = handlers or build_handlers(config)
    mcp = FastMCP(config.name, instructions=MCP_INSTRUCTIONS)
    mcp.dependencies = ["graphql-core", "aiohttp", "pydantic"]

    def _args(**values: Any) -> dict:
        return {key: value for key, value in values.items() if value is not None}

    @mcp.tool(
        name=INTROSPECT_SCHEMA,
        description=(
            "Retrieve the GraphQL schema from the endpoint. Formats: sdl (Schema Definition Language), "
            "json (type summary) or introspection (raw introspection result). Includes type and root field counts."
        ),
    )
    async def introspect_schema(
        format: Literal["sdl", "json", "introspection"] = "sdl",
        includeDescription: bool = True,
        includeDeprecated: bool = False,
        headers: dict[str, str] | None = None,
    ) -> str:
        return _unwrap(
            await handlers.call(
                INTROSPECT_SCHEMA,
                _args(
                    format=format,
                    includeDescription=includeDescription,
                    includeDeprecated=includeDeprecated,
                    headers=headers,
                ),
            )
        )

    @mcp.tool(
        name=QUERY_GRAPHQL,
        description=(
            "Execute a GraphQL query (or an allowed mutation/subscription) against the configured endpoint. "
            "Supports schema validation and dry-run mode."
        ),
    )
    async def query_graphql(
        query: str,
        variables: dict[str, Any] | None = None,
        operationName: str | None = None,
        validate: bool = True,
        dryRun: bool = False,
        headers: dict[str, str] | None = None,
    ) -> str:
        return _unwrap(
            await handlers.call(
                QUERY_GRAPHQL,
                _args(
                    query=query,
                    variables=variables,
                    operationName=operationName,
                    validate=validate,
                    dryRun=dryRun,
                    headers=headers,
                ),
            )
        )

    @mcp.tool(
        name=ANALYZE_QUERY,
        description="Analyze a GraphQL query: operation type, complexity, depth, referenced fields and fragments, with warnings.",
    )
    async def analyze_query(
        query: str,
        variables: dict[str, Any] | None = None,
        includeComplexity: bool = True,
        includeDepth: bool = True,
        includeFields: bool = True,
        headers: dict[str, str] | None = None,
    ) -> str:
        return _unwrap(
            await handlers.call(
                ANALYZE_QUERY,
                _args(
                    query=query,
                    variables=variables,
                    includeComplexity=includeComplexity,
                    includeDepth=includeDepth,
                    includeFields=includeFields,
                    headers=headers,
                ),
            )
        )

    return mcp


async def initialize_schema(handlers: GraphQLToolHandlers) -> bool:
    if not handlers.config.security.allow_introspection:
        logger.info("Introspection disabled; queries will not be validated against a schema.")
        return False
    logger.info("Initializing GraphQL schema from %s...", handlers.config.endpoint)
    try:
        snapshot = await handlers.client.introspect_schema()
    except GraphQLToolError as exc:
        logger.error("Schema initialization failed: %s", exc)
        return False
    logger.info("Schema initialized (version %s).", snapshot.version)
    return True


def _apply_cli_overrides(config: ServerConfig, args) -> ServerConfig:
    changes: dict[str, Any] = {}
    if args.endpoint:
        changes["endpoint"] = args.endpoint.strip()
    if args.header:
        changes["headers"] = {**config.headers, **_parse_headers(args.header)}
    if args.api_key:
        changes["default_api_key"] = args.api_key
    if args.allow_mutations:
        changes["allow_mutations"] = True
    if args.allow_subscriptions:
        changes["allow_subscriptions"] = True
    if args.timeout_ms is not None:
        changes["timeout_ms"] = max(1, args.timeout_ms)
    if args.retries is not None:
        changes["retries"] = max(0, args.retries)
    if args.log_level:
        changes["logging"] = replace(config.logging, level=args.log_level.lower())
    return replace(config, **changes) if changes else config


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Run the GraphQL MCP server.")
    parser.add_argument("--config", type=Path, default=None, help="Path to a JSON config file.")
    parser.add_argument("--endpoint", default=None, help="GraphQL endpoint URL (overrides config).")
    parser.add_argument(
        "--header",
        action="append",
        default=[],
        help="Add a default HTTP header, like 'X-Team: core' (repeatable).",
    )
    parser.add_argument("--api-key", default=None, help="Bearer token used when no Authorization header is set.")
    parser.add_argument("--allow-mutations", action="store_true", help="Allow mutation operations.")
    parser.add_argument("--allow-subscriptions", action="store_true", help="Allow subscription operations.")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-attempt HTTP timeout in milliseconds.")
    parser.add_argument("--retries", type=int, default=None, help="Retries after the first failed attempt.")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=DEFAULT_TRANSPORT,
        help="MCP transport to run (default: stdio; override with --transport or MCP_TRANSPORT env).",
    )
    parser.add_argument("--host", default=None, help="Host for SSE/HTTP transports.")
    parser.add_argument("--port", type=int, default=None, help="Port for SSE/HTTP transports.")
    parser.add_argument("--log-level", default=None, help="Log level (debug, info, warn, error).")
    args = parser.parse_args(argv)

    try:
        config = _apply_cli_overrides(load_config(args.config), args)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    configure_logging(config.logging.level)
    handlers = build_handlers(config)
    asyncio.run(initialize_schema(handlers))

    mcp = create_server(config, handlers)
    if args.host:
        mcp.settings.host = args.host
    if args.port:
        mcp.settings.port = args.port

    logger.info(
        "Starting %s with transport=%s, endpoint=%s, allowMutations=%s, allowSubscriptions=%s",
        config.name,
        args.transport,
        config.endpoint,
        config.allow_mutations,
        config.allow_subscriptions,
    )
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
