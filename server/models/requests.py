"""Request bodies accepted by the query API."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class AboutRequest(BaseModel):
    type: Literal["about"]
    concept: str
    certainty: float | None = None


class MatchRequest(BaseModel):
    type: Literal["match"]
    text: str
    properties: list[str] | None = None


class FindRequest(BaseModel):
    type: Literal["find"]
    text: str
    alpha: float = 0.5
    fusion_type: Literal["rankedFusion", "relativeScoreFusion"] | None = None
    property_weights: dict[str, float] | None = None


class NearVectorRequest(BaseModel):
    type: Literal["near_vector"]
    vector: list[float] | None = None
    source_id: str | None = None
    property: str | None = None
    distance: float = 0.5


class SimilarRequest(BaseModel):
    type: Literal["similar"]
    source_id: str
    distance: float | None = None


SearchRequest = Annotated[
    AboutRequest | MatchRequest | FindRequest | NearVectorRequest | SimilarRequest,
    Field(discriminator="type"),
]


class RerankRequest(BaseModel):
    query: str
    property: str


class GroupByRequest(BaseModel):
    property: str
    max_groups: int
    objects_per_group: int | None = None


class SortRequest(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class GenerateRequest(BaseModel):
    """Generation directive. `type` selects which of the text fields is used."""

    type: Literal["from_one", "from_many", "ask"]
    prompt: str | None = None
    task: str | None = None
    question: str | None = None
    messages: list[dict[str, str]] | None = None
    properties: list[str] | None = None
    options: dict[str, Any] = {}


class AggregateRequest(BaseModel):
    metrics: dict[str, list[str]] = {}
    group_by: str | None = None


class QueryRequest(BaseModel):
    """One query, expressed as data instead of chained builder calls."""

    collection: str
    select: list[str] = []
    where: dict[str, Any] | None = None
    search: SearchRequest | None = None
    rerank: RerankRequest | None = None
    spell_check: bool = False
    group_by: GroupByRequest | None = None
    sort: list[SortRequest] = []
    limit: int | None = None
    offset: int | None = None
    generate: GenerateRequest | None = None
    aggregate: AggregateRequest | None = None


class BatchQueryRequest(BaseModel):
    queries: list[QueryRequest]
    strategy: Literal["multiplexed", "independent"] | None = None
