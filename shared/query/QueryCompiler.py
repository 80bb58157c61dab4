"""Query compiler. Turns clause models into GraphQL requests.

Compilation is pure and does no I/O. Compiling the same clause twice
yields byte-identical requests.

Argument order inside a root field is fixed and mirrors the stage order the backend
applies: the `where` filter restricts the candidate set first, the search directive
ranks what is left (and carries `filterStrategy: PRE` to make that explicit), then
grouping, sorting and pagination follow.
"""

import json
import logging
from typing import Any

from shared.query.errors import InternalInvariantError
from shared.query.models.Clause import ClauseModel
from shared.query.models.Compiled import (
    BatchPlan,
    BatchStrategy,
    CompiledMember,
    CompiledRequest,
    GenerationPlan,
    GraphQLEnum,
    SelectionNode,
)
from shared.query.models.Filter import FilterGroup, FilterLeaf, FilterNode
from shared.query.models.Generation import Ask, FromMany, FromOne, GenerationOptions
from shared.query.models.Path import FieldPath, IndexSegment
from shared.query.models.Search import About, Find, Match, NearVector, Similar

# additional metadata requested per search variant; plain retrieval requests none
SEARCH_METADATA: dict[str, tuple[str, ...]] = {
    "about": ("id", "certainty", "distance"),
    "match": ("id", "score"),
    "find": ("id", "score"),
    "near_vector": ("id", "certainty", "distance"),
    "similar": ("id", "certainty", "distance"),
}

SPELLCHECK_SELECTION = "spellCheck { originalText didYouMean location numberOfCorrections changes { original corrected } }"

AGGREGATE_METRIC_SELECTION: dict[str, str] = {
    "topOccurrences": "topOccurrences { value occurs }",
}


##########################################
########### GRAPHQL RENDERING ############
##########################################

def render_value(value: Any) -> str:
    """Render a python value as a GraphQL input literal."""
    if isinstance(value, GraphQLEnum):
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {render_value(v)}" for k, v in value.items()) + "}"
    raise InternalInvariantError(f"Cannot render value of type {type(value).__name__} into GraphQL.")


def render_arguments(arguments: dict[str, Any]) -> str:
    if not arguments:
        return ""
    return "(" + ", ".join(f"{k}: {render_value(v)}" for k, v in arguments.items()) + ")"


def index_alias(name: str, index: int) -> str:
    return f"{name}__{index}"


def build_selection_tree(paths: tuple[FieldPath, ...]) -> tuple[SelectionNode, ...]:
    """Merge dot paths into a nested selection tree, keeping first-seen order."""

    def insert(level: dict, segments) -> None:
        if not segments:
            return
        head = segments[0]
        key = ("index", head.index) if isinstance(head, IndexSegment) else ("property", head.name)
        child = level.setdefault(key, {})
        insert(child, segments[1:])

    def freeze(level: dict) -> tuple[SelectionNode, ...]:
        return tuple(
            SelectionNode(kind=kind, key=key, children=freeze(children))
            for (kind, key), children in level.items()
        )

    root: dict = {}
    for path in paths:
        insert(root, list(path.segments))
    return freeze(root)


def shadowed_paths(paths: tuple[FieldPath, ...]) -> list[FieldPath]:
    """Paths that are a strict prefix of another selected path. The deeper path decides what is fetched."""
    return [
        path for path in paths
        if any(len(other.segments) > len(path.segments) and other.segments[:len(path.segments)] == path.segments for other in paths)
    ]


def render_selection(nodes: tuple[SelectionNode, ...]) -> list[str]:
    parts: list[str] = []
    for node in nodes:
        if node.kind != "property":
            continue
        named_children = tuple(c for c in node.children if c.kind == "property")
        indexed_children = [c for c in node.children if c.kind == "index"]
        if named_children or not indexed_children:
            parts.append(_render_field(node.key, "", named_children))
        for indexed in indexed_children:
            alias = index_alias(node.key, indexed.key)
            parts.append(_render_field(f"{alias}: {node.key}", f"(index: {indexed.key})", indexed.children))
    return parts


def _render_field(head: str, arguments: str, children: tuple[SelectionNode, ...]) -> str:
    if not children:
        return f"{head}{arguments}"
    return f"{head}{arguments} {{ {' '.join(render_selection(children))} }}"


##########################################
############### COMPILER #################
##########################################

class QueryCompiler:
    """Compiles clause models into GraphQL requests for single and batched execution."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logging = logger or logging.getLogger(__name__)

    ################ FILTER ##################
    def _compile_filter(self, node: FilterNode) -> dict[str, Any]:
        if isinstance(node, FilterGroup):
            return {
                "operator": GraphQLEnum(node.operator),
                "operands": [self._compile_filter(operand) for operand in node.operands],
            }
        if isinstance(node, FilterLeaf):
            value_key, value = self._typed_value(node)
            return {
                "path": [str(segment) for segment in node.path.segments],
                "operator": GraphQLEnum(node.operator),
                value_key: value,
            }
        raise InternalInvariantError(f"Unknown filter node {type(node).__name__}.")

    @staticmethod
    def _typed_value(leaf: FilterLeaf) -> tuple[str, Any]:
        value = leaf.value
        if leaf.operator == "IsNull":
            return "valueBoolean", bool(value)
        is_array = isinstance(value, tuple)
        samples = value if is_array else (value,)
        if samples and all(isinstance(v, bool) for v in samples):
            key = "valueBoolean"
        elif samples and all(isinstance(v, int) and not isinstance(v, bool) for v in samples):
            key = "valueInt"
        elif samples and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in samples):
            # any float widens the whole list to number
            key = "valueNumber"
        else:
            key = "valueText"
        return (key + "Array", list(value)) if is_array else (key, value)

    ################ SEARCH ##################
    def _compile_search(self, clause: ClauseModel) -> tuple[str, dict[str, Any]] | None:
        search = clause.search
        if search is None:
            return None
        if isinstance(search, (list, tuple)):
            raise InternalInvariantError("A clause must carry at most one search directive, got %d." % len(search))

        if isinstance(search, About):
            name, directive = "nearText", {"concepts": [search.concept]}
            if search.certainty is not None:
                directive["certainty"] = search.certainty
        elif isinstance(search, Match):
            name, directive = "bm25", {"query": search.text}
            if search.properties:
                directive["properties"] = list(search.properties)
        elif isinstance(search, Find):
            name, directive = "hybrid", {"query": search.text, "alpha": search.alpha}
            if search.fusion_type is not None:
                directive["fusionType"] = GraphQLEnum(search.fusion_type)
            if search.property_weights:
                directive["properties"] = [
                    prop if weight == 1 else f"{prop}^{weight:g}" for prop, weight in search.property_weights
                ]
        elif isinstance(search, NearVector):
            name = "nearVector"
            if search.vector is not None:
                directive = {"vector": list(search.vector)}
            else:
                directive = {"sourceId": search.source_id, "targetProperty": search.property}
            directive["distance"] = search.distance
        elif isinstance(search, Similar):
            name, directive = "nearObject", {"id": search.source_id}
            if search.distance is not None:
                directive["distance"] = search.distance
        else:
            raise InternalInvariantError(f"Unknown search variant {type(search).__name__}.")

        if clause.spell_check:
            directive["autocorrect"] = True
        if clause.filter is not None:
            directive["filterStrategy"] = GraphQLEnum("PRE")
        return name, directive

    ################ GENERATION ##################
    @staticmethod
    def _compile_options(options: GenerationOptions) -> dict[str, Any]:
        compiled: dict[str, Any] = {}
        if options.provider is not None:
            compiled["provider"] = options.provider
        if options.model is not None:
            compiled["model"] = options.model
        if options.temperature is not None:
            compiled["temperature"] = options.temperature
        if options.max_tokens is not None:
            compiled["maxTokens"] = options.max_tokens
        return compiled

    def _compile_generation(self, clause: ClauseModel) -> tuple[str | None, GenerationPlan | None]:
        """Returns the `_additional` selection for the generation directive and the normalizer plan."""
        generation = clause.generation
        if generation is None:
            return None, None
        arguments: dict[str, Any]
        if isinstance(generation, FromOne):
            if generation.prompt is not None:
                arguments = {"singleResult": {"prompt": generation.prompt}}
                plan = GenerationPlan(kind="from_one", substitution="server")
            else:
                messages = tuple(m.model_dump() for m in generation.messages)
                arguments = {"singleResult": {"messages": list(messages)}}
                plan = GenerationPlan(kind="from_one", substitution="client", messages=messages)
            result_fields = "singleResult error"
        elif isinstance(generation, FromMany):
            grouped: dict[str, Any] = {}
            if generation.task is not None:
                grouped["task"] = generation.task
            else:
                grouped["messages"] = [m.model_dump() for m in generation.messages]
            if generation.properties:
                grouped["properties"] = list(generation.properties)
            arguments = {"groupedResult": grouped}
            plan = GenerationPlan(kind="from_many")
            result_fields = "groupedResult error"
        elif isinstance(generation, Ask):
            asked: dict[str, Any] = {"question": generation.question}
            if generation.properties:
                asked["properties"] = list(generation.properties)
            options = self._compile_options(generation.options)
            if options:
                asked["options"] = options
            plan = GenerationPlan(kind="ask")
            return f"answer{render_arguments(asked)} {{ result sources error }}", plan
        else:
            raise InternalInvariantError(f"Unknown generation directive {type(generation).__name__}.")

        options = self._compile_options(generation.options)
        if options:
            arguments["options"] = options
        return f"generate{render_arguments(arguments)} {{ {result_fields} }}", plan

    ################ MEMBERS ##################
    def _compile_get(self, clause: ClauseModel, result_key: str) -> tuple[CompiledMember, str]:
        arguments: dict[str, Any] = {}
        pipeline: list[str] = []
        if clause.filter is not None:
            arguments["where"] = self._compile_filter(clause.filter)
            pipeline.append("filter")
        search = self._compile_search(clause)
        if search is not None:
            arguments[search[0]] = search[1]
            pipeline.append("search")
        if clause.rerank is not None:
            pipeline.append("rerank")
        if clause.group_by is not None:
            group: dict[str, Any] = {"path": [clause.group_by.property], "groups": clause.group_by.max_groups}
            if clause.group_by.objects_per_group is not None:
                group["objectsPerGroup"] = clause.group_by.objects_per_group
            arguments["groupBy"] = group
            pipeline.append("group")
        if clause.sort:
            arguments["sort"] = [
                {"path": entry.path.property_names(), "order": GraphQLEnum(entry.direction)}
                for entry in clause.sort
            ]
            pipeline.append("sort")
        if clause.limit is not None:
            arguments["limit"] = clause.limit
        if clause.offset is not None:
            arguments["offset"] = clause.offset
        if clause.limit is not None or clause.offset is not None:
            pipeline.append("paginate")
        generate_selection, plan = self._compile_generation(clause)
        if plan is not None:
            pipeline.append("generate")

        for path in shadowed_paths(clause.selection):
            self.logging.warning("Selection '%s' on %r is narrowed by a deeper selected path.", path, clause.collection)
        tree = build_selection_tree(clause.selection)
        fields = render_selection(tree)
        additional = self._additional_fields(clause, generate_selection)
        if additional:
            fields.append("_additional { " + " ".join(additional) + " }")
        if not fields:
            # backend default selection is "all scalar fields"; GraphQL still needs one field
            fields.append("_additional { id }")

        member = CompiledMember(
            result_key=result_key,
            operation="Get",
            collection=clause.collection,
            arguments=arguments,
            pipeline=tuple(pipeline),
            search_kind=clause.search.kind if clause.search is not None else None,
            selection=tree,
            generation=plan,
        )
        return member, " ".join(fields)

    def _additional_fields(self, clause: ClauseModel, generate_selection: str | None) -> list[str]:
        additional: list[str] = []
        if clause.search is not None:
            additional.extend(SEARCH_METADATA[clause.search.kind])
        elif clause.generation is not None or clause.group_by is not None:
            additional.append("id")
        if clause.rerank is not None:
            rerank_args = render_arguments({"property": clause.rerank.property, "query": clause.rerank.query})
            additional.append(f"rerank{rerank_args} {{ score }}")
        if clause.spell_check:
            additional.append(SPELLCHECK_SELECTION)
        if clause.group_by is not None:
            additional.append("group { id groupedBy { path value } count }")
        if generate_selection is not None:
            additional.append(generate_selection)
        return additional

    def _compile_aggregate(self, clause: ClauseModel, result_key: str) -> tuple[CompiledMember, str]:
        directive = clause.aggregate
        arguments: dict[str, Any] = {}
        pipeline: list[str] = []
        if clause.filter is not None:
            arguments["where"] = self._compile_filter(clause.filter)
            pipeline.append("filter")
        search = self._compile_search(clause)
        if search is not None:
            arguments[search[0]] = search[1]
            pipeline.append("search")
        if directive.group_by is not None:
            arguments["groupBy"] = [directive.group_by]
            pipeline.append("group")
        if clause.limit is not None:
            arguments["objectLimit"] = clause.limit
            pipeline.append("paginate")
        pipeline.append("aggregate")

        fields = ["meta { count }"]
        if directive.group_by is not None:
            fields.append("groupedBy { path value }")
        for prop, metrics in directive.metrics:
            if not metrics:
                continue
            rendered = " ".join(AGGREGATE_METRIC_SELECTION.get(m, m) for m in metrics)
            fields.append(f"{prop} {{ {rendered} }}")

        member = CompiledMember(
            result_key=result_key,
            operation="Aggregate",
            collection=clause.collection,
            arguments=arguments,
            pipeline=tuple(pipeline),
            search_kind=clause.search.kind if clause.search is not None else None,
            aggregate_group_by=directive.group_by,
        )
        return member, " ".join(fields)

    def _compile_member(self, clause: ClauseModel, alias: str | None) -> tuple[CompiledMember, str]:
        if not clause.collection:
            raise InternalInvariantError("Clause has no collection.")
        result_key = alias or clause.collection
        if clause.operation == "Aggregate":
            member, fields = self._compile_aggregate(clause, result_key)
        else:
            member, fields = self._compile_get(clause, result_key)
        head = f"{alias}: {clause.collection}" if alias else clause.collection
        return member, f"{head}{render_arguments(member.arguments)} {{ {fields} }}"

    @staticmethod
    def _document(rendered: list[tuple[CompiledMember, str]]) -> str:
        sections: list[str] = []
        for operation in ("Get", "Aggregate"):
            fields = [text for member, text in rendered if member.operation == operation]
            if fields:
                sections.append(f"{operation} {{ {' '.join(fields)} }}")
        return "{ " + " ".join(sections) + " }"

    ################ PUBLIC ##################
    def compile(self, clause: ClauseModel) -> CompiledRequest:
        """Compile a single clause into a request with one member.

        Raises:
            InternalInvariantError: If the clause violates an invariant the builder enforces.
        """
        member, text = self._compile_member(clause, alias=None)
        request = CompiledRequest(query=self._document([(member, text)]), members=(member,))
        self.logging.debug("Compiled %s query on %r: %s", member.operation, clause.collection, request.query)
        return request

    def compile_batch(self, clauses: list[ClauseModel], strategy: BatchStrategy = BatchStrategy.MULTIPLEXED) -> BatchPlan:
        """Compile several clauses for batched execution.

        With MULTIPLEXED all clauses share one GraphQL document, aliased `q0`..`qN`.
        With INDEPENDENT each clause becomes its own request.

        Returns:
            BatchPlan: Requests plus the positional slot mapping back to the input order.
        """
        strategy = BatchStrategy(strategy)
        if strategy == BatchStrategy.MULTIPLEXED and clauses:
            rendered = [self._compile_member(clause, alias=f"q{i}") for i, clause in enumerate(clauses)]
            request = CompiledRequest(
                query=self._document(rendered),
                members=tuple(member for member, _ in rendered),
                multiplexed=True,
            )
            self.logging.debug("Compiled multiplexed batch of %d queries.", len(clauses))
            return BatchPlan(strategy=strategy, requests=(request,), slots=tuple((0, i) for i in range(len(clauses))))
        requests = tuple(self.compile(clause) for clause in clauses)
        return BatchPlan(
            strategy=BatchStrategy.INDEPENDENT,
            requests=requests,
            slots=tuple((i, 0) for i in range(len(requests))),
        )
