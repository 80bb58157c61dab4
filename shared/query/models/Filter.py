"""Predicate tree model used by the `where` clause."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from shared.query.models.Path import FieldPath

ComparisonOperator = Literal[
    "Equal",
    "NotEqual",
    "GreaterThan",
    "GreaterThanEqual",
    "LessThan",
    "LessThanEqual",
    "Like",
    "ContainsAny",
    "ContainsAll",
    "IsNull",
]

LogicalOperator = Literal["And", "Or"]


class FilterLeaf(BaseModel):
    """A single `(path, operator, value)` comparison."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    path: FieldPath
    operator: ComparisonOperator
    value: Any = None


class FilterGroup(BaseModel):
    """A logical combinator over two or more operands."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["group"] = "group"
    operator: LogicalOperator
    operands: tuple["FilterNode", ...]


FilterNode = FilterLeaf | FilterGroup

FilterGroup.model_rebuild()


def combine_and(left: FilterNode | None, right: FilterNode | None) -> FilterNode | None:
    """AND two predicate trees, flattening nested ANDs and skipping empty sides."""
    if left is None:
        return right
    if right is None:
        return left
    operands: list[FilterNode] = []
    for node in (left, right):
        if isinstance(node, FilterGroup) and node.operator == "And":
            operands.extend(node.operands)
        else:
            operands.append(node)
    return FilterGroup(operator="And", operands=tuple(operands))


def iter_leaves(node: FilterNode | None):
    """Yield every leaf of a predicate tree, depth-first."""
    if node is None:
        return
    if isinstance(node, FilterLeaf):
        yield node
        return
    for operand in node.operands:
        yield from iter_leaves(operand)
