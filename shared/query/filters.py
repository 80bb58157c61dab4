"""Filter construction.

Two input forms are accepted by `QueryBuilder.where()` and both end up as the same
predicate tree (`FilterLeaf` / `FilterGroup`):

    # shorthand
    {"year": 2020, "rating": {"$gte": 4}, "$or": [{"lang": "en"}, {"lang": "de"}]}

    # builder function
    lambda op: op.And(op.Equal("year", 2020), op.GreaterThanEqual("rating", 4),
                      op.Or(op.Equal("lang", "en"), op.Equal("lang", "de")))
"""

import math
from datetime import date, datetime
from typing import Any, Callable

from shared.query.errors import ConfigurationError
from shared.query.models.Filter import FilterGroup, FilterLeaf, FilterNode
from shared.query.models.Path import FieldPath

SHORTHAND_OPERATORS: dict[str, str] = {
    "$eq": "Equal",
    "$ne": "NotEqual",
    "$gt": "GreaterThan",
    "$gte": "GreaterThanEqual",
    "$lt": "LessThan",
    "$lte": "LessThanEqual",
    "$like": "Like",
    "$in": "ContainsAny",
    "$all": "ContainsAll",
}

FilterInput = dict[str, Any] | Callable[["FilterOperators"], FilterNode] | FilterNode


def _freeze_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze_value(v) for v in value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        raise ConfigurationError(f"Filter values must be finite numbers, got {value}.")
    if isinstance(value, dict):
        raise ConfigurationError("Filter values must be scalars or lists, got a mapping.")
    return value


def _value_family(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "text"


def _check_homogeneous(path: str, values: tuple) -> None:
    families = {_value_family(v) for v in values}
    if len(families) > 1:
        raise ConfigurationError(
            f"Filter list for '{path}' mixes value types ({', '.join(sorted(families))}); use one type per list."
        )


def _parse_path(raw: str) -> FieldPath:
    try:
        return FieldPath.parse(raw)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


class FilterOperators:
    """Operator constructors handed to builder-function filters.

    Method names mirror the backend operator names.
    """

    @staticmethod
    def _leaf(path: str, operator: str, value: Any) -> FilterLeaf:
        frozen = _freeze_value(value)
        if isinstance(frozen, tuple):
            _check_homogeneous(path, frozen)
        return FilterLeaf(path=_parse_path(path), operator=operator, value=frozen)

    def Equal(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "Equal", value)

    def NotEqual(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "NotEqual", value)

    def GreaterThan(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "GreaterThan", value)

    def GreaterThanEqual(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "GreaterThanEqual", value)

    def LessThan(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "LessThan", value)

    def LessThanEqual(self, path: str, value: Any) -> FilterLeaf:
        return self._leaf(path, "LessThanEqual", value)

    def Like(self, path: str, pattern: str) -> FilterLeaf:
        return self._leaf(path, "Like", pattern)

    def ContainsAny(self, path: str, values: list) -> FilterLeaf:
        return self._leaf(path, "ContainsAny", list(values))

    def ContainsAll(self, path: str, values: list) -> FilterLeaf:
        return self._leaf(path, "ContainsAll", list(values))

    def Exists(self, path: str) -> FilterLeaf:
        return self._leaf(path, "IsNull", False)

    def IsNull(self, path: str, is_null: bool = True) -> FilterLeaf:
        return self._leaf(path, "IsNull", bool(is_null))

    def And(self, *operands: FilterNode) -> FilterNode:
        return _group("And", operands)

    def Or(self, *operands: FilterNode) -> FilterNode:
        return _group("Or", operands)


def _group(operator: str, operands) -> FilterNode:
    operands = tuple(operands)
    if not operands:
        raise ConfigurationError(f"'{operator}' needs at least one operand.")
    for operand in operands:
        if not isinstance(operand, (FilterLeaf, FilterGroup)):
            raise ConfigurationError(f"'{operator}' operands must be filter nodes, got {type(operand).__name__}.")
    if len(operands) == 1:
        return operands[0]
    return FilterGroup(operator=operator, operands=operands)


def _from_shorthand(mapping: dict[str, Any]) -> FilterNode:
    if not mapping:
        raise ConfigurationError("Empty filter mapping.")
    op = FilterOperators()
    nodes: list[FilterNode] = []
    for key, value in mapping.items():
        if key in ("$and", "$or"):
            if not isinstance(value, (list, tuple)):
                raise ConfigurationError(f"'{key}' expects a list of filter mappings.")
            children = [_from_shorthand(child) for child in value]
            nodes.append(_group("And" if key == "$and" else "Or", children))
        elif key.startswith("$"):
            raise ConfigurationError(f"Unknown logical operator '{key}'.")
        elif isinstance(value, dict):
            if not value:
                raise ConfigurationError(f"Empty operator mapping for '{key}'.")
            for op_key, operand in value.items():
                if op_key == "$exists":
                    nodes.append(op.IsNull(key, not operand))
                elif op_key in SHORTHAND_OPERATORS:
                    nodes.append(FilterOperators._leaf(key, SHORTHAND_OPERATORS[op_key], operand))
                else:
                    raise ConfigurationError(f"Unknown filter operator '{op_key}' for '{key}'.")
        elif value is None:
            nodes.append(op.IsNull(key, True))
        elif isinstance(value, (list, tuple, set)):
            nodes.append(op.ContainsAny(key, list(value)))
        else:
            nodes.append(op.Equal(key, value))
    return _group("And", nodes)


def normalize_filter(value: FilterInput) -> FilterNode | None:
    """Normalize either filter form into a predicate tree. An empty mapping means no filter.

    Args:
        value (FilterInput): A shorthand mapping, a callable receiving FilterOperators,
            or an already built node.

    Returns:
        FilterNode | None: The predicate tree, or None for an empty mapping.

    Raises:
        ConfigurationError: If the input cannot be interpreted as a filter.
    """
    if isinstance(value, (FilterLeaf, FilterGroup)):
        return value
    if isinstance(value, dict):
        return _from_shorthand(value) if value else None
    if callable(value):
        node = value(FilterOperators())
        if not isinstance(node, (FilterLeaf, FilterGroup)):
            raise ConfigurationError("Filter builder function must return a filter node.")
        return node
    raise ConfigurationError(f"Unsupported filter input of type {type(value).__name__}.")
