"""
GraphQL document handling built on graphql-core's AST.

Batch combination rewrites each queued query before merging it into a single
``query BatchQuery``. For queued operation ``i``:

- every variable ``$name`` becomes ``$op{i}_name``
- every fragment ``Name`` becomes ``op{i}_Name``
- every root field is aliased ``op{i}_<response key>``

The response is split back per operation by reversing the root aliases.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from graphql import (
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLSyntaxError,
    NameNode,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    VariableDefinitionNode,
    VariableNode,
    Visitor,
    parse,
    print_ast,
    visit,
)
from graphql.utilities import strip_ignored_characters

from ..exceptions import ValidationError

BATCH_OPERATION_NAME = "BatchQuery"


def operation_prefix(index: int) -> str:
    return f"op{index}_"


class _PrefixNames(Visitor):
    """Rename variables and fragments of one operation with a fixed prefix."""

    def __init__(self, prefix: str):
        super().__init__()
        self.prefix = prefix

    def _renamed(self, name: NameNode) -> NameNode:
        return NameNode(value=f"{self.prefix}{name.value}")

    def enter_variable(self, node: VariableNode, *_args: Any) -> VariableNode:
        return VariableNode(name=self._renamed(node.name))

    def enter_fragment_spread(self, node: FragmentSpreadNode, *_args: Any) -> FragmentSpreadNode:
        return FragmentSpreadNode(name=self._renamed(node.name), directives=node.directives)

    def enter_fragment_definition(
        self, node: FragmentDefinitionNode, *_args: Any
    ) -> FragmentDefinitionNode:
        return FragmentDefinitionNode(
            name=self._renamed(node.name),
            type_condition=node.type_condition,
            variable_definitions=node.variable_definitions,
            directives=node.directives,
            selection_set=node.selection_set,
        )


def parse_document(text: str) -> DocumentNode:
    """
    Parse GraphQL text.

    Raises:
        ValidationError: If the text is not a valid GraphQL document
    """
    if not text or not text.strip():
        raise ValidationError("Query must be a non-empty string", field="query")
    try:
        return parse(text)
    except GraphQLSyntaxError as e:
        raise ValidationError(f"Invalid GraphQL document: {e.message}", field="query") from e


def get_operations(document: DocumentNode) -> List[OperationDefinitionNode]:
    return [d for d in document.definitions if isinstance(d, OperationDefinitionNode)]


def operation_type(text: str) -> OperationType:
    """
    Return the type of the single operation in ``text``.

    Raises:
        ValidationError: If the document does not hold exactly one operation
    """
    operations = get_operations(parse_document(text))
    if len(operations) != 1:
        raise ValidationError(
            f"Expected exactly one operation, found {len(operations)}", field="query"
        )
    return operations[0].operation


@dataclass
class CombinedQuery:
    """A merged batch document plus what is needed to split its response."""

    query: str
    variables: Dict[str, Any]
    # Per operation: alias in the combined document -> caller's response key
    aliases: List[Dict[str, str]] = field(default_factory=list)

    def split(self, data: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """
        Demultiplex a combined ``data`` object.

        Returns:
            One ``data`` dict per queued operation, in enqueue order
        """
        data = data or {}
        return [
            {original: data.get(alias) for alias, original in mapping.items()}
            for mapping in self.aliases
        ]


def _prepare_operation(
    text: str, index: int
) -> Tuple[OperationDefinitionNode, List[FragmentDefinitionNode], Dict[str, str]]:
    document = parse_document(text)
    operations = get_operations(document)
    if len(operations) != 1:
        raise ValidationError(
            f"Batched documents must hold exactly one operation, found {len(operations)}",
            field="query",
        )
    if operations[0].operation is not OperationType.QUERY:
        raise ValidationError(
            f"Only queries can be batched, got {operations[0].operation.value}", field="query"
        )

    prefix = operation_prefix(index)
    renamed: DocumentNode = visit(document, _PrefixNames(prefix))

    operation = get_operations(renamed)[0]
    fragments = [d for d in renamed.definitions if isinstance(d, FragmentDefinitionNode)]

    aliases: Dict[str, str] = {}
    root_fields: List[FieldNode] = []
    for selection in operation.selection_set.selections:
        if not isinstance(selection, FieldNode):
            raise ValidationError(
                "Batched queries must select fields at the root, not fragments",
                field="query",
            )
        response_key = selection.alias.value if selection.alias else selection.name.value
        alias = f"{prefix}{response_key}"
        root_fields.append(
            FieldNode(
                alias=NameNode(value=alias),
                name=selection.name,
                arguments=selection.arguments,
                directives=selection.directives,
                selection_set=selection.selection_set,
            )
        )
        aliases[alias] = response_key

    # AST nodes may be frozen; build new ones rather than editing in place
    operation = OperationDefinitionNode(
        operation=operation.operation,
        name=operation.name,
        variable_definitions=operation.variable_definitions,
        directives=operation.directives,
        selection_set=SelectionSetNode(selections=tuple(root_fields)),
    )
    return operation, fragments, aliases


def validate_batchable(text: str) -> None:
    """Raise ValidationError unless ``text`` can join a batch."""
    _prepare_operation(text, 0)


def combine_queries(
    queries: Sequence[Tuple[str, Optional[Mapping[str, Any]]]],
) -> CombinedQuery:
    """
    Merge queued queries into one document.

    Args:
        queries: ``(query text, variables)`` pairs in enqueue order

    Returns:
        CombinedQuery with the printed document and prefixed variables

    Raises:
        ValidationError: If any query cannot be batched
    """
    variable_definitions: List[VariableDefinitionNode] = []
    selections: List[FieldNode] = []
    fragments: List[FragmentDefinitionNode] = []
    variables: Dict[str, Any] = {}
    aliases: List[Dict[str, str]] = []

    for index, (text, op_variables) in enumerate(queries):
        operation, op_fragments, op_aliases = _prepare_operation(text, index)
        variable_definitions.extend(operation.variable_definitions or ())
        selections.extend(operation.selection_set.selections)
        fragments.extend(op_fragments)
        aliases.append(op_aliases)

        prefix = operation_prefix(index)
        for name, value in (op_variables or {}).items():
            variables[f"{prefix}{name}"] = value

    batch_operation = OperationDefinitionNode(
        operation=OperationType.QUERY,
        name=NameNode(value=BATCH_OPERATION_NAME),
        variable_definitions=tuple(variable_definitions),
        directives=(),
        selection_set=SelectionSetNode(selections=tuple(selections)),
    )
    document = DocumentNode(definitions=(batch_operation, *fragments))
    return CombinedQuery(query=print_ast(document), variables=variables, aliases=aliases)


def optimize_document(text: str) -> str:
    """
    Strip whitespace, comments and commas that do not change meaning.

    String literals are left untouched. Text that does not parse is returned
    as is so the server can report the syntax error.
    """
    try:
        parse(text)
    except GraphQLSyntaxError:
        return text
    return strip_ignored_characters(text)


_SELECT_STAR = re.compile(r"\bSELECT\s+\*", re.IGNORECASE)
_LIMIT = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_SINCE = re.compile(r"\b(SINCE|UNTIL)\b", re.IGNORECASE)
_AGGREGATE = re.compile(
    r"\b(count|sum|average|avg|max|min|uniqueCount|percentile|latest|rate|histogram|"
    r"filter|funnel|median|stddev|uniques)\s*\(",
    re.IGNORECASE,
)


def suggest_nrql(nrql: str) -> List[str]:
    """
    Advisory suggestions for an NRQL query.

    The query is never rewritten; suggestions are attached to results and
    query errors to help the user.
    """
    suggestions: List[str] = []
    if _SELECT_STAR.search(nrql):
        suggestions.append("Select specific attributes instead of '*' to reduce payload size")
    if not _AGGREGATE.search(nrql) and not _LIMIT.search(nrql):
        suggestions.append("Add a LIMIT clause to bound the number of rows returned")
    if not _SINCE.search(nrql):
        suggestions.append("Add a SINCE clause; the default time window is the last hour")
    return suggestions


_LONG_WINDOW = re.compile(r"\bSINCE\s+(\d+)\s+(day|week|month)s?\s+ago", re.IGNORECASE)
_FACET_CLAUSE = re.compile(
    r"\bFACET\s+(.+?)(?=\s+(?:SINCE|UNTIL|LIMIT|ORDER\s+BY|TIMESERIES)\b|\s*$)",
    re.IGNORECASE | re.DOTALL,
)
_WHERE_CLAUSE = re.compile(
    r"\bWHERE\s+(.+?)(?=\s+(?:FACET|SINCE|UNTIL|LIMIT|TIMESERIES)\b|\s*$)",
    re.IGNORECASE | re.DOTALL,
)
_CONNECTIVE = re.compile(r"\s(AND|OR)\s", re.IGNORECASE)


def nrql_facets(nrql: str) -> List[str]:
    match = _FACET_CLAUSE.search(nrql)
    if not match:
        return []
    return [facet.strip() for facet in match.group(1).split(",") if facet.strip()]


def query_complexity(nrql: str) -> Dict[str, Any]:
    """
    Rough cost estimate for an NRQL query.

    Wildcards, facets, timeseries, long windows, subqueries and compound
    WHERE clauses each add to the score. Levels: Low (<= 3), Medium (<= 7),
    High.
    """
    upper = nrql.upper()
    score = 0
    if _SELECT_STAR.search(nrql):
        score += 3
    if "FACET" in upper:
        score += 2
    if "TIMESERIES" in upper:
        score += 2

    window = _LONG_WINDOW.search(nrql)
    if window and (window.group(2).lower() == "month" or int(window.group(1)) > 7):
        score += 2

    facets = nrql_facets(nrql)
    if len(facets) > 1:
        score += len(facets)
    if "WITH" in upper:
        score += 3

    where = _WHERE_CLAUSE.search(nrql)
    if where:
        score += len(_CONNECTIVE.findall(where.group(1)))

    level = "Low" if score <= 3 else "Medium" if score <= 7 else "High"
    return {"score": score, "level": level}
