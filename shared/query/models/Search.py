"""Search directive variants. A clause carries at most one of them."""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class About(BaseModel):
    """Semantic search by concept."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["about"] = "about"
    concept: str
    certainty: float | None = Field(default=None, ge=0.0, le=1.0)


class Match(BaseModel):
    """Keyword (BM25) search, optionally restricted to some properties."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["match"] = "match"
    text: str
    properties: tuple[str, ...] = ()


class Find(BaseModel):
    """Hybrid search. `alpha` weights vector (1.0) against keyword (0.0) scoring."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["find"] = "find"
    text: str
    alpha: float = Field(ge=0.0, le=1.0)
    fusion_type: Literal["rankedFusion", "relativeScoreFusion"] | None = None
    # property -> boost, e.g. {"title": 2} compiles to "title^2"
    property_weights: tuple[tuple[str, float], ...] = ()


class NearVector(BaseModel):
    """Vector search, either with a raw vector or by reusing a stored record's vector."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["near_vector"] = "near_vector"
    vector: tuple[float, ...] | None = None
    source_id: str | None = None
    property: str | None = None
    distance: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _check_source(self) -> "NearVector":
        if (self.vector is None) == (self.source_id is None):
            raise ValueError("near_vector needs exactly one of 'vector' or 'source_id'.")
        if self.source_id is not None and not self.property:
            raise ValueError("near_vector with 'source_id' needs the vectorized 'property'.")
        if self.vector is not None and not self.vector:
            raise ValueError("near_vector 'vector' must not be empty.")
        return self


class Similar(BaseModel):
    """Record-similarity search around an existing record."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["similar"] = "similar"
    source_id: str
    distance: float | None = Field(default=None, ge=0.0)


SearchVariant = Annotated[About | Match | Find | NearVector | Similar, Field(discriminator="kind")]

# variants operating on text input; the only ones spell checking applies to
TEXT_SEARCH_KINDS = frozenset({"about", "match", "find"})
