"""Query router: runs builder queries described as JSON bodies."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from server.api.services.QueryService import error_response
from server.models.requests import BatchQueryRequest, QueryRequest
from shared.dependencies.auth import verify_api_key
from shared.query.errors import (
    BackendError,
    ConfigurationError,
    QueryError,
    ResponseFormatError,
    RetriesExhaustedError,
    TransportError,
)

query_router = APIRouter()


def _status_for(error: QueryError) -> int:
    if isinstance(error, ConfigurationError):
        return 400
    if isinstance(error, BackendError) and error.status_code:
        return error.status_code
    if isinstance(error, (RetriesExhaustedError, TransportError)):
        return 503
    if isinstance(error, ResponseFormatError):
        return 502
    return 500


@query_router.post(
    "/query",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
)
async def handle_query(request: Request, body: QueryRequest) -> JSONResponse:
    """Execute one query and return its normalized result envelope.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (QueryRequest): The query description.

    Returns:
        JSONResponse: The normalized result, or an error body with the mapped status code.
    """
    query_service = request.app.state.query_service
    try:
        result = await query_service.do_query(body)
    except QueryError as e:
        request.app.state.logging.warning("Query on %r failed: %s", body.collection, e)
        return JSONResponse(status_code=_status_for(e), content=error_response(e).model_dump(mode="json"))
    return JSONResponse(content=result.model_dump(mode="json", by_alias=True))


@query_router.post(
    "/query/batch",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
)
async def handle_batch_query(request: Request, body: BatchQueryRequest) -> JSONResponse:
    """Execute several queries concurrently. Each slot carries its own result or error.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (BatchQueryRequest): The queries and an optional batch strategy.

    Returns:
        JSONResponse: Positionally aligned results.
    """
    request.app.state.logging.info("Batch query received with %d queries", len(body.queries))
    result = await request.app.state.query_service.do_batch(body)
    return JSONResponse(content=result.model_dump(mode="json"))
