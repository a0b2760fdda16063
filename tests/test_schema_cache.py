"""Tests for the schema snapshot cache."""

from __future__ import annotations

import pytest
from graphql import build_schema

from graphql_errors import SchemaError
from schema_cache import SchemaCache, compute_schema_version, schema_from_introspection
from tests.conftest import SAMPLE_SDL, introspection_response


class TestSchemaVersion:
    def test_deterministic(self):
        assert compute_schema_version("type Query { a: Int }") == compute_schema_version("type Query { a: Int }")

    def test_differs_for_different_sdl(self):
        assert compute_schema_version("type Query { a: Int }") != compute_schema_version("type Query { b: Int }")

    def test_fixed_length_hex(self):
        version = compute_schema_version(SAMPLE_SDL)
        assert len(version) == 8
        int(version, 16)

    def test_known_value(self):
        # md5("") = d41d8cd98f00b204e9800998ecf8427e
        assert compute_schema_version("") == "d41d8cd9"


class TestSchemaCache:
    def test_starts_empty(self):
        assert SchemaCache().current() is None

    def test_replace_keeps_single_snapshot(self):
        cache = SchemaCache()
        first = cache.replace(build_schema("type Query { a: Int }"))
        second = cache.replace(build_schema("type Query { b: Int }"))

        assert cache.current() is second
        assert first.version != second.version
        assert "b: Int" in second.sdl

    def test_same_schema_same_version(self):
        cache = SchemaCache()
        first = cache.replace(build_schema(SAMPLE_SDL))
        second = cache.replace(build_schema(SAMPLE_SDL))
        assert first.version == second.version
        assert first.fetched_at.tzinfo is not None

    def test_clear(self):
        cache = SchemaCache()
        cache.replace(build_schema("type Query { a: Int }"))
        cache.clear()
        assert cache.current() is None


class TestSchemaFromIntrospection:
    def test_builds_schema(self):
        schema = schema_from_introspection(introspection_response())
        assert schema.query_type.name == "Query"
        assert "User" in schema.type_map

    def test_errors(self):
        with pytest.raises(SchemaError) as exc_info:
            schema_from_introspection({"errors": [{"message": "denied"}], "data": None})
        assert exc_info.value.details["errors"] == [{"message": "denied"}]

    def test_missing_data(self):
        with pytest.raises(SchemaError, match="missing 'data'"):
            schema_from_introspection({})

    def test_malformed_data(self):
        with pytest.raises(SchemaError, match="Invalid introspection result"):
            schema_from_introspection({"data": {"unexpected": True}})
