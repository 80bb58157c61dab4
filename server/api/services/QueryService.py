"""Query service: translates API request bodies into builder calls and runs them."""

from server.models.requests import (
    AboutRequest,
    BatchQueryRequest,
    FindRequest,
    MatchRequest,
    NearVectorRequest,
    QueryRequest,
    SimilarRequest,
)
from server.models.responses import BatchQueryResponse, BatchSlotResponse, ErrorResponse
from shared.helper.HelperConfig import HelperConfig
from shared.query.QueryBuilder import QueryBuilder
from shared.query.QueryExecutor import QueryExecutor
from shared.query.errors import BackendError, ConfigurationError, QueryError
from shared.query.models.Result import QueryResult


def error_response(error: QueryError) -> ErrorResponse:
    return ErrorResponse(
        type=type(error).__name__,
        message=str(error),
        status_code=getattr(error, "status_code", None),
        detail=error.detail if isinstance(error, BackendError) else None,
    )


class QueryService:
    """Builds and executes queries described by QueryRequest bodies."""

    def __init__(self, helper_config: HelperConfig, executor: QueryExecutor) -> None:
        self.logging = helper_config.get_logger()
        self._executor = executor

    ##########################################
    ############### BUILDING #################
    ##########################################

    def build(self, request: QueryRequest) -> QueryBuilder:
        """Translate a request body into a query.

        Clauses are applied in a fixed order (search before rerank and spell check), so the
        request body does not need to follow the builder's call order.

        Raises:
            ConfigurationError: If the described query is invalid.
        """
        query = self._executor.query(request.collection)
        if request.select:
            query = query.select(*request.select)
        if request.where:
            query = query.where(request.where)

        search = request.search
        if isinstance(search, AboutRequest):
            query = query.about(search.concept, certainty=search.certainty)
        elif isinstance(search, MatchRequest):
            query = query.match(search.text, properties=search.properties)
        elif isinstance(search, FindRequest):
            query = query.find(
                search.text, alpha=search.alpha, fusion_type=search.fusion_type, property_weights=search.property_weights,
            )
        elif isinstance(search, NearVectorRequest):
            query = query.near_vector(
                vector=search.vector, distance=search.distance, source_id=search.source_id, property=search.property,
            )
        elif isinstance(search, SimilarRequest):
            query = query.similar(search.source_id, distance=search.distance)

        if request.rerank is not None:
            query = query.rerank(request.rerank.query, request.rerank.property)
        if request.spell_check:
            query = query.spell_check()
        if request.group_by is not None:
            query = query.group_by(
                request.group_by.property, request.group_by.max_groups, request.group_by.objects_per_group,
            )
        for entry in request.sort:
            query = query.sort(entry.field, entry.direction)
        if request.limit is not None:
            query = query.limit(request.limit)
        if request.offset is not None:
            query = query.offset(request.offset)

        generate = request.generate
        if generate is not None:
            if generate.type == "from_one":
                query = query.generate_from_one(prompt=generate.prompt, messages=generate.messages, **generate.options)
            elif generate.type == "from_many":
                query = query.generate_from_many(
                    task=generate.task, properties=generate.properties, messages=generate.messages, **generate.options,
                )
            else:
                if not generate.question:
                    raise ConfigurationError("'ask' generation needs a question.")
                query = query.ask(generate.question, properties=generate.properties, **generate.options)

        if request.aggregate is not None:
            query = query.aggregate(request.aggregate.metrics, group_by=request.aggregate.group_by)
        return query

    ##########################################
    ################ CORE ####################
    ##########################################

    async def do_query(self, request: QueryRequest) -> QueryResult:
        """Execute a single query request.

        Raises:
            QueryError: Configuration, backend, transport or exhaustion errors.
        """
        self.logging.info("Executing query on collection %r", request.collection)
        result = await self.build(request).execute()
        self.logging.info("Query on %r returned %d item(s)", request.collection, len(result.payload))
        return result

    async def do_batch(self, request: BatchQueryRequest) -> BatchQueryResponse:
        """Execute a batch of query requests. Invalid queries fail their own slot only."""
        slots: list[BatchSlotResponse | None] = [None] * len(request.queries)
        queries: list[QueryBuilder] = []
        positions: list[int] = []
        for position, query_request in enumerate(request.queries):
            try:
                queries.append(self.build(query_request))
                positions.append(position)
            except ConfigurationError as e:
                slots[position] = BatchSlotResponse(error=error_response(e))

        items = await self._executor.execute_batch(queries, strategy=request.strategy) if queries else []
        for position, item in zip(positions, items):
            if item.ok:
                slots[position] = BatchSlotResponse(result=item.result.model_dump(mode="json", by_alias=True))
            else:
                slots[position] = BatchSlotResponse(error=error_response(item.error))

        failed = sum(1 for slot in slots if slot.error is not None)
        return BatchQueryResponse(results=slots, succeeded=len(slots) - failed, failed=failed)
