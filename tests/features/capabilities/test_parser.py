# (c) Copyright Datacraft, 2026
"""Tests for the custom scope filter parser."""
import pytest

from capgate.core.features.capabilities.models import (
    CombineWith, Condition, ConditionGroup, ConditionOperator,
)
from capgate.core.features.capabilities.parser import (
    FilterLexer, FilterParser, FilterSyntaxError, parse_filter, to_dsl,
)


def test_tokens():
    tokens = FilterLexer('record.amount <= 5000 AND status = "open"').tokenize()
    assert [(t.type, t.value) for t in tokens] == [
        ("IDENTIFIER", "record.amount"),
        ("OPERATOR", "<="),
        ("NUMBER", "5000"),
        ("KEYWORD", "AND"),
        ("IDENTIFIER", "status"),
        ("OPERATOR", "=="),
        ("STRING", "open"),
    ]

def test_negative_number():
    tokens = FilterLexer("balance > -10.5").tokenize()
    assert tokens[-1].type == "NUMBER"
    assert tokens[-1].value == "-10.5"

def test_keywords_are_case_insensitive():
    tokens = FilterLexer("a in [1] or b contains 'x'").tokenize()
    assert [t.value for t in tokens if t.type == "KEYWORD"] == ["IN", "OR", "CONTAINS"]

def test_unexpected_character():
    with pytest.raises(FilterSyntaxError) as exc:
        FilterLexer("amount $ 5").tokenize()
    assert exc.value.column == 8

def test_unterminated_string():
    with pytest.raises(FilterSyntaxError) as exc:
        FilterLexer('status == "open').tokenize()
    assert exc.value.line == 1
    assert exc.value.column == 11


def test_reference_condition():
    group = parse_filter("user.id == record.created_by")
    condition = group.conditions[0]
    assert condition.field == "user.id"
    assert condition.operator == ConditionOperator.EQUALS
    assert condition.value == "record.created_by"
    assert condition.is_reference is True

def test_literals():
    group = parse_filter('status == "pending" AND amount <= 5000 AND urgent == true')
    assert group.combine_with == CombineWith.AND
    assert [(c.value, c.is_reference) for c in group.conditions] == [
        ("pending", False),
        ("5000", False),
        ("true", False),
    ]

def test_or_group():
    group = parse_filter('type IN ["truck", "trailer"] OR user.role == "admin"')
    assert group.combine_with == CombineWith.OR
    assert group.conditions[0].operator == ConditionOperator.IN
    assert group.conditions[0].value == ("truck", "trailer")

def test_not_in():
    assert parse_filter("status NOT IN ['closed']").conditions[0].operator == ConditionOperator.NOT_IN
    assert parse_filter("status NOT_IN ['closed']").conditions[0].operator == ConditionOperator.NOT_IN

def test_string_operators():
    group = parse_filter("plate STARTS_WITH 'MH' AND notes CONTAINS 'urgent'")
    assert [c.operator for c in group.conditions] == [
        ConditionOperator.STARTS_WITH,
        ConditionOperator.CONTAINS,
    ]

def test_mixing_and_or_is_rejected():
    with pytest.raises(FilterSyntaxError, match="Cannot mix"):
        FilterParser().parse("a == 1 AND b == 2 OR c == 3")

@pytest.mark.parametrize("text", [
    "",
    "a ==",
    "a 5",
    "== 5",
    "a == 1 b == 2",
    "a IN [1, other.field]",
    "a NOT 5",
    "a IN [1, 2",
])
def test_invalid_filters(text):
    with pytest.raises(FilterSyntaxError):
        FilterParser().parse(text)

def test_to_dsl_parses_back():
    text = 'user.id == record.created_by AND status IN ["open", "pending"] AND amount > 100'
    group = parse_filter(text)
    assert parse_filter(to_dsl(group)) == group

def test_to_dsl_escapes_quotes_and_backslashes():
    group = ConditionGroup(conditions=(
        Condition("notes", ConditionOperator.CONTAINS, 'say "hi" \\ now'),
        Condition("tag", ConditionOperator.IN, ('a"b', "c\\d")),
    ))
    assert parse_filter(to_dsl(group)) == group
