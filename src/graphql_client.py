"""
Async client for a single remote GraphQL endpoint.

Queries are parsed and printed with graphql-core, validated against the cached
schema snapshot when one exists, then posted with aiohttp. Failed attempts are
retried with exponential backoff (1s, 2s, 4s, ...) up to `max_retries` times.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

import aiohttp
from graphql import DocumentNode, get_introspection_query, print_ast
from graphql import validate as validate_document

from graphql_errors import NetworkError, QueryError, SchemaError, ValidationError
from query_analyzer import parse_document
from query_logging import QueryLogger
from schema_cache import SchemaCache, SchemaSnapshot, schema_from_introspection

Transport = Callable[[str, dict, dict[str, str], float], Awaitable[dict]]
RetryClassifier = Callable[[Exception], bool]


@dataclass(frozen=True)
class Endpoint:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 30000
    max_retries: int = 3


@dataclass
class QueryRequest:
    query: str | DocumentNode
    variables: dict[str, Any] | None = None
    operation_name: str | None = None
    headers: dict[str, str] | None = None


@dataclass
class QueryOutcome:
    data: Any = None
    errors: list[dict] | None = None
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        output: dict = {"data": self.data}
        if self.errors:
            output["errors"] = self.errors
        if self.extensions:
            output["extensions"] = self.extensions
        return output


class TransportError(RuntimeError):
    """A single attempt returned an unusable response."""

    def __init__(self, message: str, *, status: int | None = None, errors: list | None = None):
        super().__init__(message)
        self.status = status
        self.errors = errors or []


def merge_headers(defaults: dict[str, str], overrides: dict[str, str] | None = None) -> dict[str, str]:
    headers = dict(defaults)
    headers.update(overrides or {})
    return headers


def retry_always(exc: Exception) -> bool:
    return True


def _now_ms() -> int:
    return int(time.time() * 1000)


async def post_json(url: str, payload: dict, headers: dict[str, str], timeout_s: float) -> dict:
    request_headers = {"Accept": "application/json", "Content-Type": "application/json"}
    request_headers.update(headers)

    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(url, json=payload, headers=request_headers) as resp:
            text = await resp.text()
            body: dict | None = None
            if text:
                try:
                    body = json.loads(text)
                except json.JSONDecodeError:
                    body = None
            if resp.status >= 400:
                errors = body.get("errors") if isinstance(body, dict) else None
                raise TransportError(
                    f"GraphQL request failed ({resp.status}): {text.strip()[:500]}",
                    status=resp.status,
                    errors=errors,
                )
            if not isinstance(body, dict):
                raise TransportError("GraphQL response was not a JSON object", status=resp.status)
            return body


class GraphQLClient:
    def __init__(
        self,
        endpoint: Endpoint,
        *,
        schema_cache: SchemaCache | None = None,
        log: QueryLogger | None = None,
        transport: Transport | None = None,
        should_retry: RetryClassifier = retry_always,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.endpoint = endpoint
        self.schema_cache = schema_cache or SchemaCache()
        self.log = log or QueryLogger()
        self._transport = transport or post_json
        self._should_retry = should_retry
        self._sleep = sleep

    def update_endpoint(self, **changes) -> Endpoint:
        previous_url = self.endpoint.url
        self.endpoint = replace(self.endpoint, **changes)
        if self.endpoint.url != previous_url:
            # The cached schema describes the old endpoint.
            self.schema_cache.clear()
        self.log.info("Endpoint updated: %s", self.endpoint.url)
        return self.endpoint

    def get_schema(self) -> SchemaSnapshot | None:
        return self.schema_cache.current()

    async def introspect_schema(self, headers: dict[str, str] | None = None) -> SchemaSnapshot:
        request = QueryRequest(query=get_introspection_query(descriptions=True), headers=headers)
        try:
            outcome = await self.execute(request, validate=False)
        except NetworkError as exc:
            raise SchemaError(f"Schema introspection failed: {exc}", exc.details) from exc
        except (ValidationError, QueryError) as exc:
            raise SchemaError(f"Schema introspection failed: {exc}") from exc
        schema = schema_from_introspection({"data": outcome.data})
        snapshot = self.schema_cache.replace(schema)
        self.log.info("Schema introspected (version %s)", snapshot.version)
        return snapshot

    async def execute(
        self,
        request: QueryRequest,
        dry_run: bool = False,
        validate: bool = True,
    ) -> QueryOutcome:
        metrics: dict[str, Any] = {"startTime": _now_ms()}
        try:
            document = parse_document(request.query)
            query_text = print_ast(document)
            self.log.query(query_text, request.variables)

            if validate:
                self._validate(document)

            if dry_run:
                return QueryOutcome(
                    data=None,
                    extensions={
                        "dryRun": True,
                        "query": query_text,
                        "variables": request.variables,
                        "metrics": metrics,
                    },
                )

            payload: dict[str, Any] = {"query": query_text, "variables": request.variables or {}}
            if request.operation_name:
                payload["operationName"] = request.operation_name
            data, attempts = await self._send_with_retry(payload, request.headers)

            metrics["endTime"] = _now_ms()
            metrics["durationMs"] = metrics["endTime"] - metrics["startTime"]
            metrics["attempts"] = attempts
            return QueryOutcome(data=data, extensions={"metrics": metrics})
        except (ValidationError, NetworkError):
            raise
        except Exception as exc:
            raise QueryError(f"Query execution failed: {exc}", {"errorType": type(exc).__name__}) from exc

    def _validate(self, document: DocumentNode) -> None:
        snapshot = self.schema_cache.current()
        if snapshot is None:
            return
        errors = validate_document(snapshot.schema, document)
        if errors:
            raise ValidationError(
                "Query validation failed",
                {"errors": [error.formatted for error in errors], "schemaVersion": snapshot.version},
            )

    async def _send_with_retry(self, payload: dict, request_headers: dict[str, str] | None) -> tuple[Any, int]:
        endpoint = self.endpoint
        headers = merge_headers(endpoint.headers, request_headers)
        timeout_s = endpoint.timeout_ms / 1000.0
        total = endpoint.max_retries + 1
        last_error: Exception | None = None

        attempt = 0
        for attempt in range(total):
            try:
                result = await self._transport(endpoint.url, payload, headers, timeout_s)
                if result.get("errors"):
                    raise TransportError("GraphQL response contained errors", errors=result["errors"])
                return result.get("data"), attempt + 1
            except Exception as exc:
                last_error = exc
                self.log.warning("Attempt %s/%s against %s failed: %s", attempt + 1, total, endpoint.url, exc)
                if not self._should_retry(exc):
                    break
                if attempt < total - 1:
                    await self._sleep(2 ** attempt)

        attempts = attempt + 1
        details: dict[str, Any] = {"attempts": attempts, "lastError": str(last_error)}
        if isinstance(last_error, TransportError):
            if last_error.status is not None:
                details["status"] = last_error.status
            if last_error.errors:
                details["errors"] = last_error.errors
        raise NetworkError(f"Query execution failed after {attempts} attempts", details) from last_error
