"""
Error types raised by the GraphQL client, schema cache and analyzer.

Tool handlers convert every one of these into a structured error payload, so the
`code` and `details` carried here end up in front of the MCP client.
"""
from __future__ import annotations


class GraphQLToolError(Exception):
    """Base class for classified GraphQL failures."""

    code = "GRAPHQL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_details(self) -> dict:
        return {"code": self.code, **self.details}


class SchemaError(GraphQLToolError):
    """Introspection failed or returned no usable schema."""

    code = "SCHEMA_ERROR"


class ValidationError(GraphQLToolError):
    """The document could not be parsed or failed schema validation."""

    code = "VALIDATION_ERROR"


class NetworkError(GraphQLToolError):
    """Every attempt against the remote endpoint failed."""

    code = "NETWORK_ERROR"


class QueryError(GraphQLToolError):
    """Execution failed for a reason not covered above."""

    code = "QUERY_ERROR"


class PolicyError(Exception):
    """An operation was rejected by server policy before dispatch."""
