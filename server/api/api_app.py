"""FastAPI application entry point for the query API."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
from server.api.routers.QueryRouter import query_router
from server.api.services.QueryService import QueryService
from shared.clients.search.SearchClientManager import SearchClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.query.CollectionRegistry import CollectionRegistry
from shared.query.QueryExecutor import QueryExecutor

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown."""
    app.state.logging = setup_logging()
    app.state.config = HelperConfig(logger=app.state.logging)

    # Initialise the search backend client
    search_client = SearchClientManager(helper_config=app.state.config).get_client()
    await search_client.boot()
    if app.state.config.get_bool_val("QUERY_HEALTHCHECK_ON_BOOT", default=True):
        await search_client.do_healthcheck()

    # Wire up services
    registry = CollectionRegistry.from_config(app.state.config)
    executor = QueryExecutor(
        helper_config=app.state.config,
        transport=search_client,
        registry=registry,
    )
    app.state.query_service = QueryService(helper_config=app.state.config, executor=executor)

    app.state.logging.info(
        "Query API ready (engine=%s, known collections=%s).",
        search_client.get_engine_name(),
        registry.collections() or "none",
    )
    yield

    # Shutdown
    await search_client.close()
    app.state.logging.info("Query API shut down.")


app = FastAPI(
    title="Query Engine",
    description="Query construction and execution over a hosted vector-search and generative backend.",
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query_router)


# Server Start
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("APP_PORT", "8000"))
    logging.info(f"Starting Query API Server v{app_version} on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)
