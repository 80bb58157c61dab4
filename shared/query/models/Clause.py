"""Clause model: the immutable value describing one logical query."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.query.models.Filter import FilterNode
from shared.query.models.Generation import GenerationDirective
from shared.query.models.Path import FieldPath
from shared.query.models.Search import SearchVariant

AggregateMetric = Literal[
    "count", "sum", "mean", "median", "mode", "minimum", "maximum", "topOccurrences",
]


class SortEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: FieldPath
    direction: Literal["asc", "desc"] = "asc"


class Rerank(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    property: str


class GroupBy(BaseModel):
    """Groups search hits by a property. `objects_per_group` defaults to the backend's choice."""

    model_config = ConfigDict(frozen=True)

    property: str
    max_groups: int = Field(gt=0)
    objects_per_group: int | None = Field(default=None, gt=0)


class AggregateDirective(BaseModel):
    """Turns the query into an Aggregate query returning per-group statistics.

    Attributes:
        metrics: `(property, metric names)` pairs, in the order they were requested.
        group_by: Property to group by. None aggregates over the whole candidate set.
    """

    model_config = ConfigDict(frozen=True)

    metrics: tuple[tuple[str, tuple[AggregateMetric, ...]], ...] = ()
    group_by: str | None = None


class ClauseModel(BaseModel):
    """Immutable accumulated state of one query.

    Every builder call produces a new instance via `model_copy(update=...)`, so a
    clause kept as a template is never affected by later specialisation.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    selection: tuple[FieldPath, ...] = ()
    filter: FilterNode | None = None
    search: SearchVariant | None = None
    rerank: Rerank | None = None
    spell_check: bool = False
    group_by: GroupBy | None = None
    sort: tuple[SortEntry, ...] = ()
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    generation: GenerationDirective | None = None
    aggregate: AggregateDirective | None = None

    @property
    def operation(self) -> Literal["Get", "Aggregate"]:
        return "Aggregate" if self.aggregate is not None else "Get"
