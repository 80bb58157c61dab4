"""Compiled request models: wire-ready output of the compiler."""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class GraphQLEnum(str):
    """A string rendered without quotes in GraphQL arguments (e.g. `And`, `desc`)."""
    pass


class SelectionNode(BaseModel):
    """One node of the nested selection tree.

    A `property` node selects a field by name. An `index` node selects one element of its
    parent list property and is rendered as an aliased field (`tags__0: tags(index: 0)`).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["property", "index"]
    key: str | int
    children: tuple["SelectionNode", ...] = ()


SelectionNode.model_rebuild()


class GenerationPlan(BaseModel):
    """What the normalizer needs to know about the generation directive of a member."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["from_one", "from_many", "ask"]
    substitution: Literal["server", "client"] | None = None
    # message templates kept for client-side placeholder resolution
    messages: tuple[dict, ...] = ()


class CompiledMember(BaseModel):
    """One Get/Aggregate root field inside a compiled request.

    Attributes:
        result_key: Key of this member's data under `data.<operation>` in the response.
        operation: "Get" or "Aggregate".
        collection: Target collection.
        arguments: Ordered field arguments as rendered into the GraphQL document.
        pipeline: Explicit stage order the backend must apply.
        search_kind: The active search variant, if any.
        selection: Selection tree, used to fold indexed aliases back into lists.
        generation: Generation plan, if the clause had a generation directive.
        aggregate_group_by: Grouping property of Aggregate members.
    """

    model_config = ConfigDict(frozen=True)

    result_key: str
    operation: Literal["Get", "Aggregate"]
    collection: str
    arguments: dict[str, Any]
    pipeline: tuple[str, ...]
    search_kind: str | None = None
    selection: tuple[SelectionNode, ...] = ()
    generation: GenerationPlan | None = None
    aggregate_group_by: str | None = None


class CompiledRequest(BaseModel):
    """A wire-ready request: one GraphQL document carrying one or more members."""

    model_config = ConfigDict(frozen=True)

    query: str
    members: tuple[CompiledMember, ...]
    multiplexed: bool = False

    @property
    def member(self) -> CompiledMember:
        """The single member of a non-multiplexed request."""
        if len(self.members) != 1:
            raise ValueError("Request carries %d members; access .members instead." % len(self.members))
        return self.members[0]

    def to_payload(self) -> dict:
        return {"query": self.query}

    def to_bytes(self) -> bytes:
        """Deterministic JSON encoding of the request body."""
        return json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":")).encode("utf-8")


class BatchStrategy(str, Enum):
    MULTIPLEXED = "multiplexed"
    INDEPENDENT = "independent"


class BatchPlan(BaseModel):
    """Compiled form of a batch.

    Attributes:
        strategy: How the batch was compiled.
        requests: Requests to send.
        slots: For every input query, in input order, `(request index, member index)`.
    """

    model_config = ConfigDict(frozen=True)

    strategy: BatchStrategy
    requests: tuple[CompiledRequest, ...]
    slots: tuple[tuple[int, int], ...]
