"""
In-memory cache for the most recently introspected GraphQL schema.

Only one snapshot is kept. Each snapshot carries the canonical SDL printed by
graphql-core and a short version tag derived from that SDL, so two fetches of an
unchanged remote schema produce the same version.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

from graphql import GraphQLSchema, build_client_schema, print_schema

from graphql_errors import SchemaError

VERSION_LENGTH = 8


@dataclass(frozen=True)
class SchemaSnapshot:
    schema: GraphQLSchema
    sdl: str
    version: str
    fetched_at: datetime


def compute_schema_version(sdl: str) -> str:
    return hashlib.md5(sdl.encode("utf-8")).hexdigest()[:VERSION_LENGTH]


def schema_from_introspection(result: dict) -> GraphQLSchema:
    if result.get("errors"):
        raise SchemaError("Failed to introspect schema", {"errors": result["errors"]})
    data = result.get("data")
    if not data:
        raise SchemaError("Introspection response missing 'data'.")
    try:
        return build_client_schema(data)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"Invalid introspection result: {exc}") from exc


class SchemaCache:
    def __init__(self) -> None:
        self._snapshot: SchemaSnapshot | None = None

    def current(self) -> SchemaSnapshot | None:
        return self._snapshot

    def replace(self, schema: GraphQLSchema) -> SchemaSnapshot:
        sdl = print_schema(schema)
        snapshot = SchemaSnapshot(
            schema=schema,
            sdl=sdl,
            version=compute_schema_version(sdl),
            fetched_at=datetime.now(timezone.utc),
        )
        self._snapshot = snapshot
        return snapshot

    def clear(self) -> None:
        self._snapshot = None
