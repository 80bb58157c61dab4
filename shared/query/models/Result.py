"""Normalized result envelopes.

Every query returns either a RecordResult (Get queries, with or without search and
generation) or an AggregateResult (Aggregate queries). Both carry `meta` and `errors`.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.query.errors import QueryError


class SpellCheckChange(BaseModel):
    original: str
    corrected: str


class SpellCheck(BaseModel):
    original_text: str | None = None
    did_you_mean: str | None = None
    location: str | None = None
    number_of_corrections: int = 0
    changes: list[SpellCheckChange] = []


class RecordMetadata(BaseModel):
    """Per-record `_additional` metadata. Search metrics stay None for plain retrieval."""

    id: str | None = None
    certainty: float | None = None
    distance: float | None = None
    score: float | None = None
    rerank_score: float | None = None
    spell_check: list[SpellCheck] = []
    group: dict[str, Any] | None = None


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    properties: dict[str, Any] = {}
    additional: RecordMetadata | None = Field(default=None, alias="_additional")


class GenerationEntry(BaseModel):
    """Result of per-record generation, aligned with the payload record at the same position.

    Attributes:
        record: The originating record, including its own metadata.
        result: Generated text, None when generation failed for this record.
        error: Backend error for this record only.
        prompt: Messages with placeholders resolved against this record (client-side substitution only).
    """

    record: Record
    result: str | None = None
    error: str | None = None
    prompt: list[dict[str, str]] | None = None


class GenerationSection(BaseModel):
    kind: Literal["from_one", "from_many"]
    entries: list[GenerationEntry] | None = None
    result: str | None = None
    error: str | None = None


class AnswerSection(BaseModel):
    text: str | None = None
    sources: list[Record] = []
    error: str | None = None


class ErrorDescriptor(BaseModel):
    message: str
    path: list[str | int] = []
    code: str | None = None


class ResultMeta(BaseModel):
    count: int
    total: int | None = None


class RecordResult(BaseModel):
    kind: Literal["records"] = "records"
    collection: str
    payload: list[Record] = []
    meta: ResultMeta | None = None
    generation: GenerationSection | None = None
    answer: AnswerSection | None = None
    errors: list[ErrorDescriptor] = []


class AggregateGroup(BaseModel):
    """One group of an Aggregate result. Ungrouped aggregates produce a single group with no key."""

    group_key: Any = None
    group_path: list[str] = []
    count: int | None = None
    statistics: dict[str, dict[str, Any]] = {}


class AggregateResult(BaseModel):
    kind: Literal["aggregate"] = "aggregate"
    collection: str
    payload: list[AggregateGroup] = []
    meta: ResultMeta | None = None
    errors: list[ErrorDescriptor] = []


QueryResult = RecordResult | AggregateResult


class BatchItem(BaseModel):
    """One slot of a batched execution: either a result or the error that replaced it."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: RecordResult | AggregateResult | None = None
    error: QueryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
