"""Shared fixtures and fakes for the GraphQL MCP tests."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import pytest
from graphql import build_schema, introspection_from_schema

from config import ServerConfig
from graphql_client import Endpoint, GraphQLClient
from query_logging import QueryLogger
from tool_handlers import GraphQLToolHandlers

SAMPLE_SDL = '''
type Query {
  user(id: ID!): User
  users: [User!]!
  legacyUsers: [User!] @deprecated(reason: "Use users")
}

type Mutation {
  createUser(name: String!): User
}

"""A person with an account"""
type User {
  id: ID!
  name: String
  posts: [Post!]!
}

type Post {
  id: ID!
  title: String
  author: User
}
'''


def introspection_response(sdl: str = SAMPLE_SDL) -> dict:
    return {"data": dict(introspection_from_schema(build_schema(sdl)))}


class FakeTransport:
    """Scripted stand-in for `post_json`.

    Each call consumes the next scripted response; the last one repeats once the
    script runs out. Exceptions in the script are raised instead of returned.
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def __call__(self, url: str, payload: dict, headers: dict[str, str], timeout_s: float) -> dict:
        self.calls.append({"url": url, "payload": payload, "headers": headers, "timeout_s": timeout_s})
        if not self.responses:
            raise AssertionError("transport called without a scripted response")
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


def make_client(
    transport: FakeTransport,
    *,
    sleep: SleepRecorder | None = None,
    headers: dict[str, str] | None = None,
    max_retries: int = 0,
    timeout_ms: int = 30000,
    **kwargs: Any,
) -> GraphQLClient:
    return GraphQLClient(
        Endpoint(
            url="https://api.example.com/graphql",
            headers=headers or {},
            timeout_ms=timeout_ms,
            max_retries=max_retries,
        ),
        log=QueryLogger(),
        transport=transport,
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


def make_config(**changes: Any) -> ServerConfig:
    return replace(ServerConfig(endpoint="https://api.example.com/graphql", retries=0), **changes)


def make_handlers(transport: FakeTransport, config: ServerConfig | None = None, **client_kwargs: Any) -> GraphQLToolHandlers:
    config = config or make_config()
    client = make_client(transport, max_retries=config.retries, **client_kwargs)
    return GraphQLToolHandlers(client, config)
