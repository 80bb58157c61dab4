"""
Tests for shared/query/filters.py and shared/query/models/Filter.py
Shorthand and builder-function filters normalize to the same predicate tree.
"""

from datetime import datetime

import pytest

from shared.query.errors import ConfigurationError
from shared.query.filters import FilterOperators, normalize_filter
from shared.query.models.Filter import FilterGroup, FilterLeaf, combine_and, iter_leaves


class TestShorthand:
    def test_plain_value_is_equality(self):
        node = normalize_filter({"year": 2020})
        assert isinstance(node, FilterLeaf)
        assert node.operator == "Equal"
        assert str(node.path) == "year"
        assert node.value == 2020

    @pytest.mark.parametrize("key,operator", [
        ("$eq", "Equal"),
        ("$ne", "NotEqual"),
        ("$gt", "GreaterThan"),
        ("$gte", "GreaterThanEqual"),
        ("$lt", "LessThan"),
        ("$lte", "LessThanEqual"),
        ("$like", "Like"),
    ])
    def test_operator_keys(self, key, operator):
        node = normalize_filter({"rating": {key: 4}})
        assert node.operator == operator
        assert node.value == 4

    def test_multiple_keys_are_anded(self):
        node = normalize_filter({"year": 2020, "rating": {"$gte": 4}})
        assert isinstance(node, FilterGroup)
        assert node.operator == "And"
        assert [leaf.operator for leaf in node.operands] == ["Equal", "GreaterThanEqual"]

    def test_none_means_null(self):
        node = normalize_filter({"author": None})
        assert node.operator == "IsNull"
        assert node.value is True

    def test_exists(self):
        assert normalize_filter({"author": {"$exists": True}}).value is False
        assert normalize_filter({"author": {"$exists": False}}).value is True

    def test_list_means_contains_any(self):
        node = normalize_filter({"tags": ["climate", "energy"]})
        assert node.operator == "ContainsAny"
        assert node.value == ("climate", "energy")

    def test_or_list(self):
        node = normalize_filter({"$or": [{"lang": "en"}, {"lang": "de"}]})
        assert isinstance(node, FilterGroup)
        assert node.operator == "Or"
        assert [leaf.value for leaf in node.operands] == ["en", "de"]

    def test_nested_path(self):
        node = normalize_filter({"author.name": "Ada"})
        assert node.path.property_names() == ["author", "name"]

    def test_datetime_values_are_serialized(self):
        node = normalize_filter({"published": {"$gt": datetime(2024, 1, 2, 3, 4, 5)}})
        assert node.value == "2024-01-02T03:04:05"

    def test_empty_mapping_means_no_filter(self):
        assert normalize_filter({}) is None

    def test_mixed_int_and_float_list(self):
        node = normalize_filter({"score": {"$in": [1, 2.5]}})
        assert node.value == (1, 2.5)

    @pytest.mark.parametrize("mapping", [
        {"$or": [{}]},
        {"tags": ["a", 1]},
        {"flags": {"$all": [True, 1]}},
        {"score": float("nan")},
        {"score": {"$lt": float("inf")}},
        {"score": {"$in": [1.0, float("-inf")]}},
        {"year": {}},
        {"year": {"$between": [1, 2]}},
        {"$not": [{"year": 1}]},
        {"$and": {"year": 1}},
        {"year": {"$eq": {"nested": 1}}},
    ])
    def test_invalid_shorthand(self, mapping):
        with pytest.raises(ConfigurationError):
            normalize_filter(mapping)


class TestBuilderFunction:
    def test_same_tree_as_shorthand(self):
        from_function = normalize_filter(
            lambda op: op.And(op.Equal("year", 2020), op.GreaterThanEqual("rating", 4))
        )
        from_shorthand = normalize_filter({"year": 2020, "rating": {"$gte": 4}})
        assert from_function == from_shorthand

    def test_single_operand_group_collapses(self):
        node = normalize_filter(lambda op: op.Or(op.Equal("lang", "en")))
        assert isinstance(node, FilterLeaf)

    def test_empty_group_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_filter(lambda op: op.And())

    def test_function_must_return_node(self):
        with pytest.raises(ConfigurationError):
            normalize_filter(lambda op: {"year": 2020})

    def test_contains_all(self):
        node = FilterOperators().ContainsAll("tags", ["a", "b"])
        assert node.operator == "ContainsAll"
        assert node.value == ("a", "b")

    def test_unsupported_input(self):
        with pytest.raises(ConfigurationError):
            normalize_filter(42)


class TestCombine:
    def test_nested_ands_are_flattened(self):
        a, b, c = (normalize_filter({name: 1}) for name in ("a", "b", "c"))
        combined = combine_and(combine_and(a, b), c)
        assert isinstance(combined, FilterGroup)
        assert len(combined.operands) == 3

    def test_or_is_kept_as_operand(self):
        either = normalize_filter({"$or": [{"a": 1}, {"b": 2}]})
        combined = combine_and(either, normalize_filter({"c": 3}))
        assert combined.operands[0] == either

    def test_empty_sides(self):
        leaf = normalize_filter({"a": 1})
        assert combine_and(None, leaf) is leaf
        assert combine_and(leaf, None) is leaf
        assert combine_and(None, None) is None

    def test_iter_leaves(self):
        node = normalize_filter({"a": 1, "$or": [{"b": 2}, {"c": 3}]})
        assert [str(leaf.path) for leaf in iter_leaves(node)] == ["a", "b", "c"]
