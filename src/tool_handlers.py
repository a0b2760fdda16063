"""
Handlers behind the three MCP tools: `introspect-schema`, `query-graphql` and `analyze-query`.

Each call validates its arguments, applies the server's operation policy
(mutations, subscriptions, depth/complexity limits, rate limiting) and then
delegates to the GraphQL client or the query analyzer. Failures never escape:
they come back as `{error, tool, args, details}` payloads flagged as errors.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Literal

import pydantic
from graphql import GraphQLSchema, build_client_schema, introspection_from_schema, print_schema
from pydantic import BaseModel, ConfigDict, Field

from config import ServerConfig
from graphql_client import GraphQLClient, QueryRequest
from graphql_errors import GraphQLToolError, PolicyError
from query_analyzer import analyze_query, calculate_expanded_depth, operation_kind, parse_document
from query_logging import QueryLogger
from rate_limiter import SlidingWindowRateLimiter

INTROSPECT_SCHEMA = "introspect-schema"
QUERY_GRAPHQL = "query-graphql"
ANALYZE_QUERY = "analyze-query"
TOOL_NAMES = (INTROSPECT_SCHEMA, QUERY_GRAPHQL, ANALYZE_QUERY)

COMPLEXITY_WARNING_THRESHOLD = 100
DEPTH_WARNING_THRESHOLD = 10
FIELD_COUNT_WARNING_THRESHOLD = 50


class _ToolParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    headers: dict[str, str] | None = None


class IntrospectSchemaParams(_ToolParams):
    format: Literal["sdl", "json", "introspection"] = "sdl"
    include_description: bool = Field(True, alias="includeDescription")
    include_deprecated: bool = Field(False, alias="includeDeprecated")


class QueryGraphQLParams(_ToolParams):
    query: str
    variables: dict[str, Any] | None = None
    operation_name: str | None = Field(None, alias="operationName")
    validate_query: bool = Field(True, alias="validate")
    dry_run: bool = Field(False, alias="dryRun")


class AnalyzeQueryParams(_ToolParams):
    query: str
    variables: dict[str, Any] | None = None
    include_complexity: bool = Field(True, alias="includeComplexity")
    include_depth: bool = Field(True, alias="includeDepth")
    include_fields: bool = Field(True, alias="includeFields")


@dataclass
class ToolResponse:
    payload: dict
    is_error: bool = False

    def to_text(self) -> str:
        return json.dumps(self.payload, indent=2, default=str)


def detect_operation_type(query: str, operation_name: str | None = None) -> str:
    if operation_name:
        try:
            kind = operation_kind(parse_document(query), operation_name)
        except GraphQLToolError:
            kind = "unknown"
        if kind != "unknown":
            return kind
    trimmed = query.strip().lower()
    if trimmed.startswith("mutation"):
        return "mutation"
    if trimmed.startswith("subscription"):
        return "subscription"
    if trimmed.startswith("query") or trimmed.startswith("{"):
        return "query"
    try:
        kind = operation_kind(parse_document(query))
    except GraphQLToolError:
        return "query"
    return kind if kind != "unknown" else "query"


def _strip_deprecated(introspection: dict) -> dict:
    for type_def in introspection["__schema"]["types"]:
        if type_def.get("fields") is not None:
            type_def["fields"] = [f for f in type_def["fields"] if not f.get("isDeprecated")]
        if type_def.get("enumValues") is not None:
            type_def["enumValues"] = [v for v in type_def["enumValues"] if not v.get("isDeprecated")]
    return introspection


def _names(items: list | None) -> list[str] | None:
    if items is None:
        return None
    return [item["name"] for item in items]


def _summarize_types(introspection: dict) -> dict:
    schema = introspection["__schema"]
    types: dict[str, dict] = {}
    for type_def in schema["types"]:
        if type_def["name"].startswith("__"):
            continue
        entry: dict[str, Any] = {"kind": type_def["kind"]}
        if type_def.get("description"):
            entry["description"] = type_def["description"]
        for key in ("fields", "inputFields", "enumValues", "interfaces", "possibleTypes"):
            names = _names(type_def.get(key))
            if names:
                entry[key] = names
        types[type_def["name"]] = entry
    return {
        "queryType": (schema.get("queryType") or {}).get("name"),
        "mutationType": (schema.get("mutationType") or {}).get("name"),
        "subscriptionType": (schema.get("subscriptionType") or {}).get("name"),
        "types": types,
    }


def render_schema(
    schema: GraphQLSchema,
    output_format: str,
    *,
    include_description: bool = True,
    include_deprecated: bool = False,
) -> str:
    introspection = dict(introspection_from_schema(schema, descriptions=include_description))
    if not include_deprecated:
        introspection = _strip_deprecated(introspection)
    if output_format == "introspection":
        return json.dumps(introspection, indent=2)
    if output_format == "json":
        return json.dumps(_summarize_types(introspection), indent=2)
    return print_schema(build_client_schema(introspection))


def _root_field_count(root) -> int:
    return len(root.fields) if root is not None else 0


class GraphQLToolHandlers:
    def __init__(
        self,
        client: GraphQLClient,
        config: ServerConfig,
        *,
        log: QueryLogger | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ):
        self.client = client
        self.config = config
        self.log = log or client.log
        limits = config.security.rate_limiting
        if rate_limiter is None and limits.enabled:
            rate_limiter = SlidingWindowRateLimiter(limits.max, limits.window_ms)
        self.rate_limiter = rate_limiter
        self._handlers = {
            INTROSPECT_SCHEMA: self.introspect_schema,
            QUERY_GRAPHQL: self.query_graphql,
            ANALYZE_QUERY: self.analyze_query,
        }

    async def call(self, name: str, arguments: dict | None) -> ToolResponse:
        args = dict(arguments or {})
        self.log.info("Tool called: %s", name)
        handler = self._handlers.get(name)
        if handler is None:
            return self._error(name, args, f"Unknown tool: {name}")
        try:
            return ToolResponse(await handler(args))
        except pydantic.ValidationError as exc:
            details = {"validation": exc.errors(include_url=False, include_context=False, include_input=False)}
            return self._error(name, args, f"Invalid arguments for {name}", details)
        except PolicyError as exc:
            return self._error(name, args, str(exc))
        except GraphQLToolError as exc:
            return self._error(name, args, exc.message, exc.to_details())
        except Exception as exc:
            self.log.logger.exception("Unexpected failure in tool %s", name)
            return self._error(name, args, str(exc) or type(exc).__name__, {"errorType": type(exc).__name__})

    def _error(self, name: str, args: dict, message: str, details: dict | None = None) -> ToolResponse:
        self.log.error("Tool execution failed: %s: %s", name, message)
        payload: dict[str, Any] = {"error": message, "tool": name, "args": args}
        if details:
            payload["details"] = details
        return ToolResponse(payload, is_error=True)

    async def introspect_schema(self, args: dict) -> dict:
        params = IntrospectSchemaParams.model_validate(args)
        if not self.config.security.allow_introspection:
            raise PolicyError("Schema introspection is disabled. Set security.allowIntrospection to true to enable it.")
        start = time.perf_counter()
        self.log.debug("Starting schema introspection (format=%s)", params.format)

        snapshot = await self.client.introspect_schema(params.headers)
        schema = snapshot.schema
        types = sum(1 for name in schema.type_map if not name.startswith("__"))
        queries = _root_field_count(schema.query_type)
        mutations = _root_field_count(schema.mutation_type)
        subscriptions = _root_field_count(schema.subscription_type)
        rendered = render_schema(
            schema,
            params.format,
            include_description=params.include_description,
            include_deprecated=params.include_deprecated,
        )

        self.log.performance(
            "Schema introspection",
            (time.perf_counter() - start) * 1000,
            types=types,
            queries=queries,
            mutations=mutations,
            subscriptions=subscriptions,
            format=params.format,
        )
        return {
            "schema": rendered,
            "format": params.format,
            "types": types,
            "queries": queries,
            "mutations": mutations,
            "subscriptions": subscriptions,
            "version": snapshot.version,
            "lastUpdated": snapshot.fetched_at.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }

    async def query_graphql(self, args: dict) -> dict:
        params = QueryGraphQLParams.model_validate(args)
        start = time.perf_counter()
        operation_type = detect_operation_type(params.query, params.operation_name)
        await self._enforce_policy(params, operation_type)

        outcome = await self.client.execute(
            QueryRequest(
                query=params.query,
                variables=params.variables,
                operation_name=params.operation_name,
                headers=params.headers,
            ),
            dry_run=params.dry_run,
            validate=params.validate_query,
        )
        self.log.performance(
            "GraphQL query execution",
            (time.perf_counter() - start) * 1000,
            operationType=operation_type,
            operationName=params.operation_name,
            dryRun=params.dry_run,
        )
        return outcome.to_dict()

    async def _enforce_policy(self, params: QueryGraphQLParams, operation_type: str) -> None:
        if operation_type == "mutation" and not self.config.allow_mutations:
            raise PolicyError("Mutations are disabled. Set allowMutations to true to enable them.")
        if operation_type == "subscription" and not self.config.allow_subscriptions:
            raise PolicyError("Subscriptions are disabled. Set allowSubscriptions to true to enable them.")

        security = self.config.security
        document = parse_document(params.query)
        analysis = analyze_query(document)
        depth = calculate_expanded_depth(document)
        if depth > security.max_depth:
            raise PolicyError(f"Query depth {depth} exceeds the maximum of {security.max_depth}.")
        if analysis.complexity > security.max_complexity:
            raise PolicyError(
                f"Query complexity {analysis.complexity} exceeds the maximum of {security.max_complexity}."
            )

        if self.rate_limiter is not None and not params.dry_run:
            if not await self.rate_limiter.try_acquire():
                raise PolicyError(
                    "Rate limit exceeded. Retry in "
                    f"{self.rate_limiter.retry_after_s():.1f}s."
                )

    async def analyze_query(self, args: dict) -> dict:
        params = AnalyzeQueryParams.model_validate(args)
        start = time.perf_counter()
        analysis = analyze_query(params.query, params.variables)

        result: dict[str, Any] = {"operation": analysis.operation}
        if params.include_complexity:
            result["complexity"] = analysis.complexity
        if params.include_depth:
            result["depth"] = analysis.depth
        if params.include_fields:
            result["fields"] = analysis.fields
            result["variables"] = analysis.variables
            result["fragments"] = analysis.fragments

        warnings: list[str] = []
        if analysis.complexity > COMPLEXITY_WARNING_THRESHOLD:
            warnings.append(
                f"High query complexity: {analysis.complexity}. Consider simplifying the query."
            )
        if analysis.depth > DEPTH_WARNING_THRESHOLD:
            warnings.append(f"Deep query nesting: {analysis.depth} levels. This may impact performance.")
        if len(analysis.fields) > FIELD_COUNT_WARNING_THRESHOLD:
            warnings.append(
                f"Large number of fields: {len(analysis.fields)}. Consider using fragments or pagination."
            )
        result["warnings"] = warnings
        result["errors"] = []

        self.log.performance(
            "Query analysis",
            (time.perf_counter() - start) * 1000,
            operation=analysis.operation,
            complexity=analysis.complexity,
            depth=analysis.depth,
            fieldCount=len(analysis.fields),
            warningCount=len(warnings),
        )
        return result
