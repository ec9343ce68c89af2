"""Tests for src/bestofjs_mcp/query.py: criteria, sort, paging, projection."""

import pytest
from pydantic import ValidationError

from bestofjs_mcp.query import (
    AllOf,
    And,
    Compare,
    Equals,
    In,
    MatchAll,
    NotIn,
    Or,
    QueryError,
    SearchQuery,
    evaluate,
    parse_criteria,
    project,
    run_query,
    sort_records,
)

RECORDS = [
    {"name": "a", "stars": 10, "tags": ["x", "y"], "trends": {"daily": 3}},
    {"name": "b", "stars": 30, "tags": ["y"], "trends": {"daily": 1}},
    {"name": "c", "stars": 20, "tags": ["x", "z"]},
    {"name": "d", "stars": 30, "tags": [], "trends": {"daily": 7}},
    {"name": "e", "tags": ["z"], "archived": True},
]


def names(records):
    return [record["name"] for record in records]


def matching(criteria):
    expression = parse_criteria(criteria)
    return names(r for r in RECORDS if evaluate(expression, r))


# -----------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------


class TestParseCriteria:
    def test_empty_matches_all(self):
        assert parse_criteria({}) == MatchAll()
        assert parse_criteria(None) == MatchAll()

    def test_implicit_equality(self):
        assert parse_criteria({"name": "a"}) == Equals("name", "a")

    def test_operators_compile_to_expressions(self):
        expression = parse_criteria(
            {"tags": {"$in": ["x"], "$nin": ["z"]}, "stars": {"$gt": 5}}
        )
        assert expression == And(
            (In("tags", ("x",)), NotIn("tags", ("z",)), Compare("stars", "$gt", 5))
        )

    def test_logical_operators(self):
        expression = parse_criteria({"$or": [{"name": "a"}, {"tags": {"$all": ["z"]}}]})
        assert expression == Or((Equals("name", "a"), AllOf("tags", ("z",))))

    def test_unsupported_field_operator(self):
        with pytest.raises(QueryError, match=r"\$where"):
            parse_criteria({"name": {"$where": "1"}})

    def test_unsupported_top_level_operator(self):
        with pytest.raises(QueryError, match=r"\$text"):
            parse_criteria({"$text": {"$search": "react"}})

    def test_list_operator_requires_list(self):
        with pytest.raises(QueryError, match="expects a list"):
            parse_criteria({"tags": {"$in": "x"}})

    def test_logical_requires_non_empty_list(self):
        with pytest.raises(QueryError):
            parse_criteria({"$and": []})
        with pytest.raises(QueryError):
            parse_criteria({"$or": ["name"]})

    def test_mixed_operator_object_rejected(self):
        with pytest.raises(QueryError, match="Cannot mix"):
            parse_criteria({"trends": {"$gt": 1, "daily": 2}})

    def test_invalid_regex(self):
        with pytest.raises(QueryError, match="Invalid"):
            parse_criteria({"name": {"$regex": "("}})

    def test_options_without_regex(self):
        with pytest.raises(QueryError):
            parse_criteria({"name": {"$options": "i"}})

    def test_criteria_must_be_object(self):
        with pytest.raises(QueryError):
            parse_criteria(["name"])


# -----------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------


class TestEvaluate:
    def test_equality_on_scalar(self):
        assert matching({"stars": 30}) == ["b", "d"]

    def test_equality_on_array_contains(self):
        assert matching({"tags": "x"}) == ["a", "c"]

    def test_equality_on_whole_array(self):
        assert matching({"tags": ["x", "z"]}) == ["c"]

    def test_null_matches_missing(self):
        assert matching({"stars": None}) == ["e"]

    def test_ne(self):
        assert matching({"tags": {"$ne": "x"}}) == ["b", "d", "e"]

    def test_in(self):
        assert matching({"tags": {"$in": ["y", "z"]}}) == ["a", "b", "c", "e"]

    def test_nin_matches_missing_and_empty(self):
        assert matching({"tags": {"$nin": ["x", "y"]}}) == ["d", "e"]

    def test_all(self):
        assert matching({"tags": {"$all": ["x", "y"]}}) == ["a"]

    def test_all_empty_matches_nothing(self):
        assert matching({"tags": {"$all": []}}) == []

    def test_comparisons(self):
        assert matching({"stars": {"$gte": 20}}) == ["b", "c", "d"]
        assert matching({"stars": {"$gt": 10, "$lt": 30}}) == ["c"]
        assert matching({"stars": {"$lte": 10}}) == ["a"]

    def test_comparison_ignores_other_types(self):
        assert matching({"name": {"$gt": 5}}) == []

    def test_dotted_path(self):
        assert matching({"trends.daily": {"$gt": 2}}) == ["a", "d"]

    def test_exists(self):
        assert matching({"trends": {"$exists": False}}) == ["c", "e"]
        assert matching({"archived": {"$exists": True}}) == ["e"]

    def test_regex_with_options(self):
        records = [{"name": "React"}, {"name": "Preact"}, {"name": "Vue"}]
        expression = parse_criteria({"name": {"$regex": "^react", "$options": "i"}})
        assert names(r for r in records if evaluate(expression, r)) == ["React"]

    def test_bool_is_not_int(self):
        assert matching({"archived": 1}) == []
        assert matching({"archived": True}) == ["e"]

    def test_and_or_nor(self):
        assert matching({"$and": [{"tags": "x"}, {"stars": {"$gt": 15}}]}) == ["c"]
        assert matching({"$or": [{"name": "a"}, {"name": "e"}]}) == ["a", "e"]
        assert matching({"$nor": [{"tags": "x"}, {"tags": "z"}]}) == ["b", "d"]

    def test_array_of_objects_path(self):
        records = [{"name": "p", "links": [{"kind": "npm"}, {"kind": "docs"}]}]
        expression = parse_criteria({"links.kind": "docs"})
        assert evaluate(expression, records[0]) is True


# -----------------------------------------------------------------------
# Sort / projection
# -----------------------------------------------------------------------


class TestSortRecords:
    def test_descending_stable_on_ties(self):
        assert names(sort_records(RECORDS, {"stars": -1})) == ["b", "d", "c", "a", "e"]

    def test_ascending_missing_first(self):
        assert names(sort_records(RECORDS, {"stars": 1})) == ["e", "a", "c", "b", "d"]

    def test_multiple_keys(self):
        result = sort_records(RECORDS, {"stars": -1, "name": -1})
        assert names(result) == ["d", "b", "c", "a", "e"]

    def test_nested_key(self):
        result = sort_records(RECORDS, {"trends.daily": -1})
        assert names(result) == ["d", "a", "b", "c", "e"]

    def test_input_not_reordered(self):
        before = names(RECORDS)
        sort_records(RECORDS, {"stars": 1})
        assert names(RECORDS) == before

    def test_invalid_direction(self):
        with pytest.raises(QueryError):
            sort_records(RECORDS, {"stars": 2})


class TestProject:
    def test_inclusion(self):
        assert project(RECORDS[0], {"stars": 1, "name": 1}) == {"name": "a", "stars": 10}

    def test_inclusion_skips_missing(self):
        assert project(RECORDS[4], {"name": 1, "icon": 1}) == {"name": "e"}

    def test_inclusion_nested(self):
        assert project(RECORDS[0], {"trends.daily": 1}) == {"trends": {"daily": 3}}

    def test_exclusion(self):
        result = project(RECORDS[0], {"tags": 0, "trends": 0})
        assert result == {"name": "a", "stars": 10}

    def test_no_projection_returns_copy(self):
        result = project(RECORDS[0], None)
        assert result == RECORDS[0]
        assert result is not RECORDS[0]

    def test_mixed_projection_rejected(self):
        with pytest.raises(QueryError, match="mix"):
            project(RECORDS[0], {"name": 1, "tags": 0})


# -----------------------------------------------------------------------
# SearchQuery / run_query
# -----------------------------------------------------------------------


class TestSearchQuery:
    def test_defaults(self):
        query = SearchQuery()
        assert query.criteria == {}
        assert query.sort == {}
        assert query.skip == 0
        assert query.limit is None
        assert query.projection is None

    def test_none_values_normalized(self):
        query = SearchQuery(criteria=None, sort=None, skip=None)
        assert query.criteria == {}
        assert query.sort == {}
        assert query.skip == 0

    def test_negative_skip_rejected(self):
        with pytest.raises(ValidationError):
            SearchQuery(skip=-1)

    def test_negative_limit_rejected(self):
        with pytest.raises(ValidationError):
            SearchQuery(limit=-5)

    def test_bad_sort_direction_rejected(self):
        with pytest.raises(ValidationError):
            SearchQuery(sort={"stars": 0})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            SearchQuery(filter={"name": "a"})


class TestRunQuery:
    def test_total_counts_before_paging(self):
        results, total = run_query(
            RECORDS, SearchQuery(criteria={"tags": {"$ne": "q"}}, limit=2)
        )
        assert total == 5
        assert names(results) == ["a", "b"]

    def test_sort_skip_limit(self):
        query = SearchQuery(sort={"stars": -1}, skip=1, limit=2)
        results, total = run_query(RECORDS, query)
        assert names(results) == ["d", "c"]
        assert total == 5

    def test_skip_beyond_total(self):
        results, total = run_query(RECORDS, SearchQuery(criteria={"tags": "x"}, skip=10))
        assert results == []
        assert total == 2

    def test_limit_zero(self):
        results, total = run_query(RECORDS, SearchQuery(limit=0))
        assert results == []
        assert total == 5

    def test_projection_applied_after_paging(self):
        query = SearchQuery(sort={"stars": -1}, limit=1, projection={"name": 1})
        results, _ = run_query(RECORDS, query)
        assert results == [{"name": "b"}]

    def test_mixed_projection_rejected_on_empty_page(self):
        query = SearchQuery(criteria={"name": "zzz"}, projection={"name": 1, "tags": 0})
        with pytest.raises(QueryError):
            run_query(RECORDS, query)

    def test_results_are_copies(self):
        results, _ = run_query(RECORDS, SearchQuery(limit=1))
        results[0]["name"] = "changed"
        assert RECORDS[0]["name"] == "a"
