"""Query executor. Sends compiled requests with retry/backoff, singly or batched.

The executor is the only component that performs I/O. Each request owns its retry
state; batched members run concurrently through asyncio.gather and results come back
in input order. Cancelling a running batch cancels every in-flight member, including
members waiting in a backoff sleep.
"""

import asyncio
import random
from typing import Awaitable, Callable, Sequence

from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.query.CollectionRegistry import CollectionRegistry
from shared.query.QueryBuilder import QueryBuilder
from shared.query.QueryCompiler import QueryCompiler
from shared.query.ResponseNormalizer import ResponseNormalizer
from shared.query.errors import (
    ConfigurationError,
    QueryError,
    ResponseFormatError,
    RetriesExhaustedError,
    TransportError,
    is_retryable,
)
from shared.query.models.Clause import ClauseModel
from shared.query.models.Compiled import BatchStrategy, CompiledRequest
from shared.query.models.Result import BatchItem, QueryResult
from shared.query.models.Retry import RetryPolicy


class QueryExecutor:
    """Runs queries against a search backend transport."""

    def __init__(
        self,
        helper_config: HelperConfig,
        transport: SearchClientInterface,
        retry_policy: RetryPolicy | None = None,
        registry: CollectionRegistry | None = None,
        batch_strategy: BatchStrategy | str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy.from_config(helper_config)
        self._registry = registry
        if batch_strategy is None:
            batch_strategy = helper_config.get_choice_val(
                "QUERY_BATCH_STRATEGY", [s.value for s in BatchStrategy], default=BatchStrategy.MULTIPLEXED.value,
            )
        self._batch_strategy = BatchStrategy(batch_strategy)
        self._compiler = QueryCompiler(logger=self.logging)
        self._normalizer = ResponseNormalizer(logger=self.logging)
        self._sleep = sleep
        self._rng = rng or random.Random()

    ##########################################
    ################ GETTER ##################
    ##########################################

    def query(self, collection: str) -> QueryBuilder:
        """Start a query bound to this executor, so it can be run with `await query.execute()`."""
        return QueryBuilder.collection(collection, registry=self._registry, executor=self)

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @staticmethod
    def _clause_of(query: QueryBuilder | ClauseModel) -> ClauseModel:
        if isinstance(query, QueryBuilder):
            return query.validate_complete()
        if isinstance(query, ClauseModel):
            return query
        raise ConfigurationError(f"Cannot execute object of type {type(query).__name__}.")

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _attempt(self, request: CompiledRequest) -> dict:
        timeout = self._retry_policy.attempt_timeout
        if timeout is None:
            return await self._transport.send(request)
        try:
            return await asyncio.wait_for(self._transport.send(request, timeout=timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Attempt timed out after {timeout}s.") from e

    async def send_with_retry(self, request: CompiledRequest) -> dict:
        """Send a compiled request, retrying retryable failures with exponential backoff.

        Args:
            request (CompiledRequest): The request to send.

        Returns:
            dict: The raw backend envelope.

        Raises:
            BackendError: Non-retryable backend errors, raised on first occurrence.
            RetriesExhaustedError: When every attempt failed with a retryable error.
        """
        policy = self._retry_policy
        last_error: QueryError | None = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self._attempt(request)
            except QueryError as e:
                if not is_retryable(e):
                    self.logging.error("Query failed with non-retryable %s: %s", type(e).__name__, e)
                    raise
                last_error = e
                if attempt == policy.max_attempts:
                    break
                delay = policy.delay_for(attempt, self._rng)
                self.logging.warning(
                    "Attempt %d/%d failed with %s: %s. Retrying in %.2fs.",
                    attempt, policy.max_attempts, type(e).__name__, e, delay,
                )
                await self._sleep(delay)

        self.logging.error("Query failed after %d attempts: %s", policy.max_attempts, last_error)
        raise RetriesExhaustedError(last_error, attempts=policy.max_attempts)

    def _normalize(self, request: CompiledRequest, member_index: int, envelope: dict) -> QueryResult:
        member = request.members[member_index]
        try:
            return self._normalizer.normalize(member, envelope, multiplexed=request.multiplexed)
        except ResponseFormatError:
            raise
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            raise ResponseFormatError(f"Malformed response for {member.collection!r}: {e}") from e

    ##########################################
    ################# CORE ###################
    ##########################################

    async def execute(self, query: QueryBuilder | ClauseModel) -> QueryResult:
        """Compile, send and normalize a single query.

        Raises:
            ConfigurationError: If the query is incomplete; raised before any network call.
            QueryError: Any backend, transport or exhaustion error.
        """
        request = self._compiler.compile(self._clause_of(query))
        envelope = await self.send_with_retry(request)
        return self._normalize(request, 0, envelope)

    async def execute_batch(
        self,
        queries: Sequence[QueryBuilder | ClauseModel],
        strategy: BatchStrategy | str | None = None,
    ) -> list[BatchItem]:
        """Execute several queries concurrently.

        Failures are isolated per slot: the returned list holds one BatchItem per input
        query, in input order, carrying either the normalized result or the error.

        Args:
            queries: The queries to run.
            strategy: MULTIPLEXED (one combined request) or INDEPENDENT (one request per query).
                Defaults to the executor's configured strategy.

        Returns:
            list[BatchItem]: Positionally aligned results.
        """
        strategy = BatchStrategy(strategy) if strategy is not None else self._batch_strategy
        items: list[BatchItem | None] = [None] * len(queries)

        clauses: list[ClauseModel] = []
        positions: list[int] = []
        for position, query in enumerate(queries):
            try:
                clauses.append(self._clause_of(query))
                positions.append(position)
            except ConfigurationError as e:
                self.logging.warning("Batch slot %d rejected before execution: %s", position, e)
                items[position] = BatchItem(error=e)

        if clauses:
            plan = self._compiler.compile_batch(clauses, strategy)
            outcomes = await asyncio.gather(
                *[self.send_with_retry(request) for request in plan.requests],
                return_exceptions=True,
            )
            for position, (request_index, member_index) in zip(positions, plan.slots):
                outcome = outcomes[request_index]
                if isinstance(outcome, QueryError):
                    items[position] = BatchItem(error=outcome)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                try:
                    result = self._normalize(plan.requests[request_index], member_index, outcome)
                except ResponseFormatError as e:
                    self.logging.error("Batch slot %d could not be normalized: %s", position, e)
                    items[position] = BatchItem(error=e)
                else:
                    items[position] = BatchItem(result=result)

        failed = sum(1 for item in items if not item.ok)
        self.logging.info(
            "Batch of %d queries complete (%s): %d succeeded, %d failed.",
            len(items), strategy.value, len(items) - failed, failed,
        )
        return items
