"""
Structural analysis of GraphQL documents.

Complexity is the number of field selections reachable from the operations
(fragment spreads are expanded where they are used), depth is the deepest chain
of nested fields, and fields is every field name seen, de-duplicated in first-seen
order. Fragment spreads and inline fragments never add to depth: their fields
are walked for complexity and names but sit at the level of the enclosing field.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from graphql import DocumentNode, GraphQLSyntaxError, parse
from graphql.language.ast import (
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    OperationDefinitionNode,
    SelectionNode,
    SelectionSetNode,
)

from graphql_errors import ValidationError

OPERATION_KINDS = ("query", "mutation", "subscription")


@dataclass
class AnalysisResult:
    operation: str
    complexity: int = 0
    depth: int = 0
    fields: list[str] = field(default_factory=list)
    variables: list[str] = field(default_factory=list)
    fragments: list[str] = field(default_factory=list)


def parse_document(query: str | DocumentNode) -> DocumentNode:
    if isinstance(query, DocumentNode):
        return query
    try:
        return parse(query)
    except GraphQLSyntaxError as exc:
        raise ValidationError(f"Query analysis failed: {exc.message}", {"errors": [exc.formatted]}) from exc


def operation_kind(document: DocumentNode, operation_name: str | None = None) -> str:
    """Kind of the named operation, or of the first one when no name is given."""
    for definition in document.definitions:
        if not isinstance(definition, OperationDefinitionNode):
            continue
        if operation_name is None:
            return definition.operation.value
        if definition.name is not None and definition.name.value == operation_name:
            return definition.operation.value
    return "unknown"


def _fragment_map(document: DocumentNode) -> dict[str, FragmentDefinitionNode]:
    return {
        definition.name.value: definition
        for definition in document.definitions
        if isinstance(definition, FragmentDefinitionNode)
    }


def _operations(document: DocumentNode) -> list[OperationDefinitionNode]:
    return [d for d in document.definitions if isinstance(d, OperationDefinitionNode)]


class _FieldWalker:
    """Walks selections, expanding spreads, and records every field in visit order."""

    def __init__(self, fragments: dict[str, FragmentDefinitionNode]):
        self.fragments = fragments
        self.names: list[str] = []

    def walk(self, selection_set: SelectionSetNode | None, active: tuple[str, ...] = ()) -> None:
        if selection_set is None:
            return
        for selection in selection_set.selections:
            self.visit(selection, active)

    def visit(self, node: SelectionNode, active: tuple[str, ...]) -> None:
        if isinstance(node, FieldNode):
            self.names.append(node.name.value)
            self.walk(node.selection_set, active)
        elif isinstance(node, InlineFragmentNode):
            self.walk(node.selection_set, active)
        elif isinstance(node, FragmentSpreadNode):
            name = node.name.value
            fragment = self.fragments.get(name)
            # Unknown or self-referencing spreads are left to schema validation.
            if fragment is None or name in active:
                return
            self.walk(fragment.selection_set, active + (name,))
        else:
            raise TypeError(f"Unexpected selection node: {type(node).__name__}")


def _field_depth(node: SelectionNode, level: int) -> int:
    if not isinstance(node, FieldNode):
        return 0
    deepest = level
    if node.selection_set is not None:
        for child in node.selection_set.selections:
            deepest = max(deepest, _field_depth(child, level + 1))
    return deepest


def calculate_depth(document: DocumentNode) -> int:
    depth = 0
    for operation in _operations(document):
        for selection in operation.selection_set.selections:
            depth = max(depth, _field_depth(selection, 1))
    return depth


def _expanded_depth(
    selection_set: SelectionSetNode | None,
    level: int,
    fragments: dict[str, FragmentDefinitionNode],
    active: tuple[str, ...],
) -> int:
    if selection_set is None:
        return 0
    deepest = 0
    for node in selection_set.selections:
        if isinstance(node, FieldNode):
            deepest = max(deepest, level, _expanded_depth(node.selection_set, level + 1, fragments, active))
        elif isinstance(node, InlineFragmentNode):
            deepest = max(deepest, _expanded_depth(node.selection_set, level, fragments, active))
        elif isinstance(node, FragmentSpreadNode):
            name = node.name.value
            fragment = fragments.get(name)
            if fragment is None or name in active:
                continue
            deepest = max(deepest, _expanded_depth(fragment.selection_set, level, fragments, active + (name,)))
        else:
            raise TypeError(f"Unexpected selection node: {type(node).__name__}")
    return deepest


def calculate_expanded_depth(document: DocumentNode) -> int:
    """
    Deepest chain of nested fields once fragments are inlined.

    Inline fragments and spreads are looked through without adding a level, so
    wrapping fields in fragments cannot hide their nesting. Used for limits;
    `calculate_depth` stays the reported figure.
    """
    fragments = _fragment_map(document)
    return max(
        (_expanded_depth(operation.selection_set, 1, fragments, ()) for operation in _operations(document)),
        default=0,
    )


def collect_fields(document: DocumentNode) -> list[str]:
    """All field selections reachable from the operations, repeats included."""
    walker = _FieldWalker(_fragment_map(document))
    for operation in _operations(document):
        walker.walk(operation.selection_set)
    return walker.names


def extract_fragments(document: DocumentNode) -> list[str]:
    return [
        definition.name.value
        for definition in document.definitions
        if isinstance(definition, FragmentDefinitionNode)
    ]


def analyze_query(query: str | DocumentNode, variables: dict | None = None) -> AnalysisResult:
    document = parse_document(query)
    visited = collect_fields(document)
    return AnalysisResult(
        operation=operation_kind(document),
        complexity=len(visited),
        depth=calculate_depth(document),
        fields=list(dict.fromkeys(visited)),
        variables=list(variables or {}),
        fragments=extract_fragments(document),
    )
