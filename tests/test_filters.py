"""Tests for filter translation into PostgREST predicates."""

import logging

from app.integrations.supabase_rest import TableQuery
from app.query.filters import resolve_operator, translate_filters
from app.query.schemas import FilterOperator


def _translate(filters):
    return translate_filters(TableQuery(None, "briefs"), filters).filters


class TestLiteralFilters:
    def test_equality(self):
        assert _translate({"category": "design"}) == [("category", "eq.design")]

    def test_boolean_and_number(self):
        assert _translate({"read": False, "price": 100}) == [("read", "eq.false"), ("price", "eq.100")]

    def test_list_becomes_membership(self):
        assert _translate({"status": ["open", "in_progress"]}) == [("status", "in.(open,in_progress)")]

    def test_membership_quotes_reserved_chars(self):
        assert _translate({"title": ["a,b", "c"]}) == [("title", 'in.("a,b",c)')]

    def test_none_and_empty_skipped(self):
        assert _translate({"category": None, "type": "", "userId": "u1"}) == [("userId", "eq.u1")]

    def test_empty_list_skipped(self):
        assert _translate({"status": []}) == []

    def test_no_filters(self):
        assert _translate({}) == []
        assert _translate(None) == []


class TestOperatorFilters:
    def test_range_operators(self):
        result = _translate({
            "price": {"operator": "gte", "value": 100},
            "deliveryTime": {"operator": "lte", "value": 7},
        })
        assert result == [("price", "gte.100"), ("deliveryTime", "lte.7")]

    def test_pattern_operators(self):
        result = _translate({
            "title": {"operator": "ilike", "value": "%logo%"},
            "slug": {"operator": "like", "value": "web-%"},
        })
        assert result == [("title", "ilike.%logo%"), ("slug", "like.web-%")]

    def test_contains_json(self):
        result = _translate({"participants": {"operator": "cs", "value": '[{"id":"u1"}]'}})
        assert result == [("participants", 'cs.[{"id":"u1"}]')]

    def test_neq(self):
        assert _translate({"status": {"operator": "neq", "value": "closed"}}) == [("status", "neq.closed")]

    def test_operator_case_insensitive(self):
        assert _translate({"price": {"operator": "GTE", "value": 5}}) == [("price", "gte.5")]

    def test_unknown_operator_degrades_to_equality(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = _translate({"price": {"operator": "between", "value": 10}})
        assert result == [("price", "eq.10")]
        assert "Unknown filter operator" in caplog.text

    def test_operator_without_value_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = _translate({"price": {"operator": "gte"}})
        assert result == []
        assert "operator without value" in caplog.text

    def test_in_operator_with_scalar_value(self):
        assert _translate({"status": {"operator": "in", "value": "open"}}) == [("status", "in.(open)")]
        assert _translate({"status": {"operator": "in", "value": ["open", "draft"]}}) == [
            ("status", "in.(open,draft)"),
        ]
        result = _translate({"_or": [{"status": {"operator": "in", "value": "open"}}, {"userId": "u1"}]})
        assert result == [("or", "(status.in.(open),userId.eq.u1)")]

    def test_resolve_operator(self):
        assert resolve_operator("price", {"operator": "lte", "value": 3}) == (FilterOperator.LTE, 3)
        assert resolve_operator("price", {"operator": "gte", "value": None}) is None
        assert resolve_operator("status", {"operator": "in", "value": "open"}) == (FilterOperator.IN, ["open"])


class TestDisjunction:
    def test_or_group(self):
        result = _translate({
            "_or": [
                {"title": {"operator": "ilike", "value": "%logo%"}},
                {"description": {"operator": "ilike", "value": "%logo%"}},
            ],
        })
        assert result == [("or", "(title.ilike.%logo%,description.ilike.%logo%)")]

    def test_or_group_and_plain_filters(self):
        result = _translate({
            "category": "design",
            "_or": [{"providerId": "u1"}, {"clientId": "u1"}],
        })
        assert result == [("category", "eq.design"), ("or", "(providerId.eq.u1,clientId.eq.u1)")]

    def test_or_value_with_comma_is_quoted(self):
        result = _translate({"_or": [{"title": "a, b"}, {"title": "c"}]})
        assert result == [("or", '(title.eq."a, b",title.eq.c)')]

    def test_or_membership(self):
        result = _translate({"_or": [{"status": ["open", "draft"]}, {"userId": "u1"}]})
        assert result == [("or", "(status.in.(open,draft),userId.eq.u1)")]

    def test_empty_or_group_skipped(self):
        assert _translate({"_or": [{"title": None}]}) == []

    def test_malformed_or_group_ignored(self):
        assert _translate({"_or": "title.eq.x"}) == []
