"""
Tests for GraphQL document handling: batching, optimization, NRQL advice.
"""

import pytest
from graphql import parse

from nr_guardian.exceptions import ValidationError
from nr_guardian.graphql.documents import (
    BATCH_OPERATION_NAME,
    combine_queries,
    operation_type,
    optimize_document,
    suggest_nrql,
    validate_batchable,
)

ACCOUNT_QUERY = """
query Account($id: Int!) {
  actor { account(id: $id) { name } }
}
"""

USER_QUERY = "{ actor { user { name email } } }"

FRAGMENT_QUERY = """
query Entity($guid: EntityGuid!) {
  actor { entity(guid: $guid) { ...EntityFields } }
}
fragment EntityFields on Entity { name guid }
"""


class TestCombineQueries:
    """Test merging queued queries into one document."""

    def test_prefixes_variables_and_aliases(self):
        combined = combine_queries([(ACCOUNT_QUERY, {"id": 1}), (ACCOUNT_QUERY, {"id": 2})])

        assert combined.variables == {"op0_id": 1}
        assert combined.aliases == [{"op0_actor": "actor"}, {"op1_actor": "actor"}]

        document = parse(combined.query)
        operation = document.definitions[0]
        assert operation.name.value == BATCH_OPERATION_NAME
        assert [v.variable.name.value for v in operation.variable_definitions] == ["op0_id", "op1_id"]
        assert "$op1_id" in combined.query
        assert "$id" not in combined.query

    def test_prefixes_fragments(self):
        combined = combine_queries([(FRAGMENT_QUERY, {"guid": "A"}), (FRAGMENT_QUERY, {"guid": "B"})])

        fragment_names = [
            d.name.value for d in parse(combined.query).definitions if d.kind == "fragment_definition"
        ]
        assert fragment_names == ["op0_EntityFields", "op1_EntityFields"]
        assert "...op1_EntityFields" in combined.query

    def test_fragment_per_query_is_prefixed(self):
        """Each query keeps its own fragment even when the names collide."""
        first = "query($id: Int!) { actor { account(id: $id) { ...F } } } fragment F on Account { name }"
        second = "{ u: actor { user { ...F } } } fragment F on User { email }"

        combined = combine_queries([(first, {"id": 1}), (second, None)])

        assert "$op0_id" in combined.query
        assert "...op0_F" in combined.query
        assert "...op1_F" in combined.query
        assert "op1_u: actor" in combined.query
        assert combined.variables == {"op0_id": 1}
        assert combined.aliases == [{"op0_actor": "actor"}, {"op1_u": "u"}]

        # Combining again from the same text gives the same document
        assert combine_queries([(first, {"id": 1}), (second, None)]).query == combined.query

    def test_keeps_existing_alias_as_response_key(self):
        combined = combine_queries([("{ me: actor { user { name } } }", None)])
        assert combined.aliases == [{"op0_me": "me"}]

    def test_split_restores_original_shape(self):
        combined = combine_queries([(ACCOUNT_QUERY, {"id": 1}), (USER_QUERY, None)])

        results = combined.split(
            {
                "op0_actor": {"account": {"name": "Prod"}},
                "op1_actor": {"user": {"name": "Ada", "email": "ada@example.com"}},
            }
        )

        assert results == [
            {"actor": {"account": {"name": "Prod"}}},
            {"actor": {"user": {"name": "Ada", "email": "ada@example.com"}}},
        ]

    def test_split_missing_data(self):
        combined = combine_queries([(USER_QUERY, None)])
        assert combined.split(None) == [{"actor": None}]

    def test_rejects_mutation(self):
        with pytest.raises(ValidationError, match="Only queries"):
            combine_queries([("mutation { dashboardDelete(guid: \"x\") { status } }", None)])

    def test_rejects_multiple_operations(self):
        with pytest.raises(ValidationError, match="exactly one operation"):
            validate_batchable("query A { actor { user { name } } } query B { actor { user { id } } }")

    def test_rejects_invalid_syntax(self):
        with pytest.raises(ValidationError, match="Invalid GraphQL"):
            validate_batchable("{ actor { ")


class TestOperationType:
    def test_subscription(self):
        assert operation_type("subscription { alertEvents { id } }").value == "subscription"

    def test_empty(self):
        with pytest.raises(ValidationError):
            operation_type("   ")


class TestOptimizeDocument:
    """Test whitespace and comment stripping."""

    def test_strips_ignored_characters(self):
        text = """
        # fetch the user
        query   User {
          actor {
            user { name,  email }
          }
        }
        """
        optimized = optimize_document(text)

        assert "#" not in optimized
        assert "\n" not in optimized
        assert parse(optimized).definitions[0].name.value == "User"

    def test_keeps_string_literals(self):
        text = 'query { actor { entitySearch(query: "name   LIKE  \'%api%\'  # not a comment") { count } } }'
        optimized = optimize_document(text)

        assert "\"name   LIKE  '%api%'  # not a comment\"" in optimized

    def test_invalid_text_unchanged(self):
        assert optimize_document("{ broken") == "{ broken"

    def test_unbalanced_text_unchanged(self):
        text = "query  User { actor { user { name } }"
        assert optimize_document(text) == text


class TestSuggestNrql:
    def test_select_star_without_limit(self):
        suggestions = suggest_nrql("SELECT * FROM Transaction")
        assert len(suggestions) == 3

    def test_well_formed_query(self):
        assert suggest_nrql("SELECT count(*) FROM Transaction SINCE 1 day ago") == []
