"""Fluent, clone-on-write query builder.

Every chainable call validates the resulting clause and returns a new builder; the
receiver is never modified, so a partially built query can be kept as a template:

    base = QueryBuilder.collection("TextDocument").select("id", "title").about("climate change")
    top5 = base.limit(5)
    top50 = base.limit(50)   # base and top5 are unchanged
"""

from typing import TYPE_CHECKING, Any, Iterable, Literal

from pydantic import ValidationError as PydanticValidationError

from shared.query.CollectionRegistry import CollectionRegistry
from shared.query.errors import ConfigurationError
from shared.query.filters import FilterInput, normalize_filter
from shared.query.models.Clause import AggregateDirective, ClauseModel, GroupBy, Rerank, SortEntry
from shared.query.models.Filter import combine_and, iter_leaves
from shared.query.models.Generation import Ask, FromMany, FromOne, GenerationOptions, Message
from shared.query.models.Path import FieldPath
from shared.query.models.Search import About, Find, Match, NearVector, Similar, TEXT_SEARCH_KINDS

if TYPE_CHECKING:
    from shared.query.QueryExecutor import QueryExecutor
    from shared.query.models.Compiled import CompiledRequest
    from shared.query.models.Result import QueryResult


def _build(model_class, **kwargs):
    """Instantiate a clause fragment, turning pydantic validation errors into ConfigurationError."""
    try:
        return model_class(**kwargs)
    except (PydanticValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid {model_class.__name__}: {e}") from e


def _parse_path(raw: str) -> FieldPath:
    try:
        return FieldPath.parse(raw)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def _check_count(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}.")
    if value < 0:
        raise ConfigurationError(f"'{name}' must not be negative, got {value}.")
    return value


def _messages(messages: Iterable[dict | Message] | None) -> tuple[Message, ...] | None:
    if messages is None:
        return None
    return tuple(m if isinstance(m, Message) else _build(Message, **m) for m in messages)


class QueryBuilder:
    """Accumulates clauses for one collection and acts as the executable handle of the query."""

    def __init__(
        self,
        clause: ClauseModel,
        registry: CollectionRegistry | None = None,
        executor: "QueryExecutor | None" = None,
    ):
        self._clause = clause
        self._registry = registry
        self._executor = executor

    @classmethod
    def collection(
        cls,
        name: str,
        registry: CollectionRegistry | None = None,
        executor: "QueryExecutor | None" = None,
    ) -> "QueryBuilder":
        """Entry point: start an empty query against a collection.

        Raises:
            ConfigurationError: If the collection identifier is empty.
        """
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Collection identifier must be a non-empty string.")
        return cls(ClauseModel(collection=name.strip()), registry=registry, executor=executor)

    @property
    def clause(self) -> ClauseModel:
        return self._clause

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def _derive(self, **update: Any) -> "QueryBuilder":
        clause = self._clause.model_copy(update=update)
        self._validate(clause)
        return QueryBuilder(clause, registry=self._registry, executor=self._executor)

    def _validate(self, clause: ClauseModel) -> None:
        """Structural checks run after every chained call."""
        if clause.rerank is not None and clause.search is None:
            raise ConfigurationError("rerank requires an active search clause.")
        if clause.spell_check and clause.search is None:
            raise ConfigurationError("spell_check requires an active search clause.")
        if clause.spell_check and clause.search.kind not in TEXT_SEARCH_KINDS:
            raise ConfigurationError(f"spell_check is not supported with '{clause.search.kind}' search.")
        if clause.rerank is not None and clause.group_by is not None:
            raise ConfigurationError("rerank cannot be combined with group_by.")
        if clause.aggregate is not None:
            conflicts = {
                "generation": clause.generation is not None,
                "rerank": clause.rerank is not None,
                "sort": bool(clause.sort),
                "group_by": clause.group_by is not None,
                "offset": clause.offset is not None,
                "select": bool(clause.selection),
                "spell_check": clause.spell_check,
            }
            used = [name for name, present in conflicts.items() if present]
            if used:
                raise ConfigurationError(f"aggregate cannot be combined with: {', '.join(used)}.")
        self._validate_fields(clause)

    def _validate_fields(self, clause: ClauseModel) -> None:
        if self._registry is None:
            return
        known = self._registry.known_fields(clause.collection)
        if known is None:
            return
        roots = [p.root for p in clause.selection]
        roots += [leaf.path.root for leaf in iter_leaves(clause.filter)]
        roots += [s.path.root for s in clause.sort]
        if clause.group_by is not None:
            roots.append(clause.group_by.property)
        unknown = sorted({r for r in roots if r not in known and not r.startswith("_")})
        if unknown:
            raise ConfigurationError(
                f"Unknown field(s) for collection '{clause.collection}': {', '.join(unknown)}."
            )

    def validate_complete(self) -> ClauseModel:
        """Final checks before compilation.

        Returns:
            ClauseModel: The validated clause.

        Raises:
            ConfigurationError: If a generation directive has neither search nor selection to work on.
        """
        clause = self._clause
        if clause.generation is not None and clause.search is None and not clause.selection:
            raise ConfigurationError("Generation requires a search clause or an explicit selection.")
        return clause

    ##########################################
    ############### CLAUSES ##################
    ##########################################

    def select(self, *paths: str) -> "QueryBuilder":
        """Add field paths to the selection. Duplicates are ignored, order is kept.

        When both `details` and `details.width` are selected the deeper path wins and only
        `width` is fetched for `details`.
        """
        if not paths:
            raise ConfigurationError("select() needs at least one field path.")
        selection = list(self._clause.selection)
        for raw in paths:
            path = _parse_path(raw)
            if path not in selection:
                selection.append(path)
        return self._derive(selection=tuple(selection))

    def where(self, filter: FilterInput) -> "QueryBuilder":
        """Add a predicate. Repeated calls are combined with AND."""
        return self._derive(filter=combine_and(self._clause.filter, normalize_filter(filter)))

    def _with_search(self, variant) -> "QueryBuilder":
        if self._clause.search is not None:
            raise ConfigurationError(
                f"Query already has a '{self._clause.search.kind}' search; cannot add '{variant.kind}'."
            )
        return self._derive(search=variant)

    def about(self, concept: str, certainty: float | None = None) -> "QueryBuilder":
        return self._with_search(_build(About, concept=concept, certainty=certainty))

    def match(self, text: str, properties: list[str] | None = None) -> "QueryBuilder":
        return self._with_search(_build(Match, text=text, properties=tuple(properties or ())))

    def find(
        self,
        text: str,
        alpha: float = 0.5,
        fusion_type: Literal["rankedFusion", "relativeScoreFusion"] | None = None,
        property_weights: dict[str, float] | None = None,
    ) -> "QueryBuilder":
        return self._with_search(_build(
            Find,
            text=text,
            alpha=alpha,
            fusion_type=fusion_type,
            property_weights=tuple((property_weights or {}).items()),
        ))

    def near_vector(
        self,
        vector: list[float] | None = None,
        distance: float = 0.5,
        source_id: str | None = None,
        property: str | None = None,
    ) -> "QueryBuilder":
        return self._with_search(_build(
            NearVector,
            vector=tuple(vector) if vector is not None else None,
            source_id=source_id,
            property=property,
            distance=distance,
        ))

    def similar(self, source_id: str, distance: float | None = None) -> "QueryBuilder":
        return self._with_search(_build(Similar, source_id=source_id, distance=distance))

    def rerank(self, query: str, property: str) -> "QueryBuilder":
        return self._derive(rerank=_build(Rerank, query=query, property=property))

    def spell_check(self, enabled: bool = True) -> "QueryBuilder":
        return self._derive(spell_check=bool(enabled))

    def group_by(self, property: str, max_groups: int, objects_per_group: int | None = None) -> "QueryBuilder":
        return self._derive(group_by=_build(
            GroupBy, property=property, max_groups=max_groups, objects_per_group=objects_per_group,
        ))

    def sort(self, field: str, direction: Literal["asc", "desc"] = "asc") -> "QueryBuilder":
        """Append a sort key. Earlier keys take priority; later ones break ties."""
        path = _parse_path(field)
        if len(path.property_names()) != len(path.segments):
            raise ConfigurationError(f"Cannot sort on '{field}': sort paths cannot contain list indexes.")
        entry = _build(SortEntry, path=path, direction=direction)
        return self._derive(sort=self._clause.sort + (entry,))

    def limit(self, limit: int) -> "QueryBuilder":
        return self._derive(limit=_check_count("limit", limit))

    def offset(self, offset: int) -> "QueryBuilder":
        return self._derive(offset=_check_count("offset", offset))

    def _with_generation(self, directive) -> "QueryBuilder":
        if self._clause.generation is not None:
            raise ConfigurationError("Query already has a generation directive.")
        return self._derive(generation=directive)

    def generate_from_one(
        self,
        prompt: str | None = None,
        messages: list[dict | Message] | None = None,
        **options: Any,
    ) -> "QueryBuilder":
        """Generate one result per record from a `{property}` prompt template or a message list."""
        return self._with_generation(_build(
            FromOne, prompt=prompt, messages=_messages(messages), options=_build(GenerationOptions, **options),
        ))

    def generate_from_many(
        self,
        task: str | None = None,
        properties: list[str] | None = None,
        messages: list[dict | Message] | None = None,
        **options: Any,
    ) -> "QueryBuilder":
        """Generate one synthesized result over all records."""
        return self._with_generation(_build(
            FromMany,
            task=task,
            messages=_messages(messages),
            properties=tuple(properties or ()),
            options=_build(GenerationOptions, **options),
        ))

    def ask(self, question: str, properties: list[str] | None = None, **options: Any) -> "QueryBuilder":
        return self._with_generation(_build(
            Ask, question=question, properties=tuple(properties or ()), options=_build(GenerationOptions, **options),
        ))

    def aggregate(self, metrics: dict[str, list[str]], group_by: str | None = None) -> "QueryBuilder":
        """Switch to an Aggregate query.

        Args:
            metrics (dict[str, list[str]]): property -> metric names, e.g. {"price": ["mean", "maximum"]}.
            group_by (str | None): Property to group by.
        """
        if self._clause.aggregate is not None:
            raise ConfigurationError("Query already has an aggregate directive.")
        directive = _build(
            AggregateDirective,
            metrics=tuple((prop, tuple(names)) for prop, names in metrics.items()),
            group_by=group_by,
        )
        return self._derive(aggregate=directive)

    def clone(self) -> "QueryBuilder":
        """Return an independent handle over the same clause, for template reuse."""
        return QueryBuilder(self._clause, registry=self._registry, executor=self._executor)

    ##########################################
    ############### EXECUTION ################
    ##########################################

    def compile(self) -> "CompiledRequest":
        from shared.query.QueryCompiler import QueryCompiler
        return QueryCompiler().compile(self.validate_complete())

    async def execute(self) -> "QueryResult":
        """Compile and run the query through the bound executor.

        Raises:
            ConfigurationError: If no executor is bound to this handle.
        """
        if self._executor is None:
            raise ConfigurationError("No executor bound to this query. Use QueryExecutor.query().")
        return await self._executor.execute(self)

    def __repr__(self) -> str:
        return f"QueryBuilder({self._clause!r})"
