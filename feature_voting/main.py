"""Feature Voting: Main FastAPI Application.

Stakeholders spend a limited pool of votes across the candidate features of
a time-boxed voting session; product owners and system admins manage the
sessions, features and role grants.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse
from .services import (
    BudgetExhausted,
    Forbidden,
    ImportFailed,
    IncompleteAllocation,
    InvalidRequest,
    NothingToRemove,
    NotFound,
    PersistenceFailure,
    SessionClosed,
    VotingError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# HTTP status for each service error
ERROR_STATUS_CODES: dict[type[VotingError], int] = {
    SessionClosed: status.HTTP_409_CONFLICT,
    BudgetExhausted: status.HTTP_409_CONFLICT,
    NothingToRemove: status.HTTP_409_CONFLICT,
    IncompleteAllocation: 422,  # unprocessable content
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    ImportFailed: status.HTTP_502_BAD_GATEWAY,
    PersistenceFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup - skip init_db in production (tables already exist)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Feature Voting API

    Prioritize features by letting stakeholders spend a fixed vote budget.

    ### Key Features

    - **Vote budgets**: every stakeholder spends exactly `votes_per_user` votes per session.
    - **Time-boxed sessions**: votes are only accepted between the start and end dates.
    - **Azure DevOps import**: re-importing refreshes feature metadata without losing votes.
    - **Role grants**: system admins, product owners and stakeholders per product.

    ### Authentication

    Send `Authorization: Bearer <token>`, or `X-Requester-Email` naming an existing user.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


def _error_handler(status_code: int):
    async def handle(request: Request, exc: VotingError) -> JSONResponse:
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=exc.code, message=exc.message).model_dump(),
        )

    return handle


for error_class, status_code in ERROR_STATUS_CODES.items():
    app.add_exception_handler(error_class, _error_handler(status_code))
app.add_exception_handler(VotingError, _error_handler(status.HTTP_400_BAD_REQUEST))


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    message = "An unexpected error occurred"
    if settings.debug or settings.environment != "production":
        message = f"{message}: {str(exc)[:200]}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="internal_error", message=message).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "feature_voting.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
