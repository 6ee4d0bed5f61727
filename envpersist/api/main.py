"""
FastAPI app assembly: environment middleware, error handlers and the
diagnostic routes.

The middleware is the request boundary of the persistence router: it resolves
the environment label from the request signals, binds it on the registry for
the lifetime of the request and reports it back in the response.
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request
from starlette.responses import JSONResponse

# Configure logging
LOG_LEVEL_NAME = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.INFO)
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)
logger.setLevel(LOG_LEVEL)

from envpersist.api.deps import (
    get_current_context,
    get_environment_label,
    get_registry,
    get_repository,
)
from envpersist.db import schemas
from envpersist.db.context import PersistenceContext
from envpersist.db.database import DatabaseSettings
from envpersist.db.registry import PersistenceContextRegistry
from envpersist.db.repositories import CompanyRepository
from envpersist.exceptions import ContextError, InvalidCriteriaError, RepositoryError
from envpersist.utils.environments import (
    ENV_HEADER,
    ENV_QUERY_PARAM,
    EnvironmentLabel,
    EnvironmentResolver,
    EnvironmentSignals,
)
from envpersist.utils.session_store import (
    DEFAULT_MAX_SESSIONS,
    DEFAULT_SESSION_TTL_SECONDS,
    SESSION_COOKIE_NAME,
    InMemorySessionStore,
    SessionStore,
)


def create_app(
    registry: Optional[PersistenceContextRegistry] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    registry = registry or PersistenceContextRegistry(DatabaseSettings.from_env())
    if session_store is None:
        session_store = InMemorySessionStore(
            max_sessions=int(os.getenv("SESSION_MAX_ENTRIES", DEFAULT_MAX_SESSIONS)),
            ttl_seconds=float(os.getenv("SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS)),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.registry.dispose()

    app = FastAPI(
        title="Environment-scoped Persistence Router",
        description="Routes every request to the dev or prod database and keeps their entities apart.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.session_store = session_store

    @app.middleware("http")
    async def bind_database_environment(request: Request, call_next):
        store = request.app.state.session_store
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        stored = store.get(session_id) if session_id else None
        # only a session the resolver actually wrote to is worth storing
        session = stored if stored is not None else {}
        signals = EnvironmentSignals(
            query_param=request.query_params.get(ENV_QUERY_PARAM),
            header=request.headers.get(ENV_HEADER),
            session=session,
        )
        label = EnvironmentResolver().resolve(signals)
        if stored is None and session:
            session_id = session_id or store.new_session_id()
            store.save(session_id, session)
        elif stored is None:
            session_id = None

        active_registry = request.app.state.registry
        try:
            token = active_registry.bind(label)
        except ContextError as e:
            logger.error("environment_unavailable: label=%s error=%s", label.value, e)
            return JSONResponse(
                {"detail": str(e), "environment": label.value},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        request.state.database_env = label
        try:
            response = await call_next(request)
        finally:
            active_registry.deactivate(token)

        response.headers[ENV_HEADER] = label.value
        if session_id is not None:
            response.set_cookie(SESSION_COOKIE_NAME, session_id, httponly=True, samesite="lax")
        return response

    @app.exception_handler(ContextError)
    async def context_error_handler(request: Request, exc: ContextError):
        return JSONResponse(
            {"detail": str(exc), "environment": exc.label},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        if isinstance(exc, InvalidCriteriaError):
            return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)
        logger.error("repository_error: %s", exc.formatted_message())
        return JSONResponse({"detail": "Database query failed"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.get("/environment", response_model=schemas.EnvironmentInfo)
    def read_environment(
        label: EnvironmentLabel = Depends(get_environment_label),
        context: PersistenceContext = Depends(get_current_context),
        registry: PersistenceContextRegistry = Depends(get_registry),
    ):
        return schemas.EnvironmentInfo(
            environment=label.value,
            dialect=context.dialect,
            identity_map_size=context.identity_map_size,
            cached_environments=sorted(cached.value for cached in registry.cached_labels()),
        )

    @app.get("/health", response_model=schemas.HealthStatus)
    def health(
        label: EnvironmentLabel = Depends(get_environment_label),
        context: PersistenceContext = Depends(get_current_context),
    ):
        try:
            context.ping()
        except SQLAlchemyError as e:
            logger.warning("health_check_failed: label=%s error=%s", label.value, e)
            return JSONResponse(
                schemas.HealthStatus(
                    status="unavailable", environment=label.value, database=context.dialect, detail=str(e)
                ).model_dump(),
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return schemas.HealthStatus(status="ok", environment=label.value, database=context.dialect)

    @app.get("/companies", response_model=schemas.CompanyPage)
    def list_companies(
        page: int = Query(1, ge=1),
        per_page: int = Query(20, ge=1, le=100),
        repository: CompanyRepository = Depends(get_repository(CompanyRepository)),
    ):
        result = repository.paginate(page=page, per_page=per_page, order_by=[("id", "asc")])
        return schemas.CompanyPage(
            items=[schemas.Company.model_validate(c) for c in result.items],
            total_count=result.total_count,
            current_page=result.current_page,
            total_pages=result.total_pages,
            has_next_page=result.has_next_page,
        )

    @app.get("/companies/{company_id}", response_model=schemas.Company)
    def read_company(
        company_id: int,
        repository: CompanyRepository = Depends(get_repository(CompanyRepository)),
    ):
        company = repository.find_by_id(company_id)
        if company is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
        return company

    logger.info("app_startup: log_level=%s", LOG_LEVEL_NAME)
    return app


app = create_app()
