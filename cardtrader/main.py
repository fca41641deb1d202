import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from cardtrader.api import auth_router, cards_router, health_router
from cardtrader.config import DEFAULT_JWT_SECRET, settings
from cardtrader.db.database import init_db
from cardtrader.jobs.seed_cards import seed_if_empty
from cardtrader.models.failure import ApiResponse, FailureKind, InternalError, KnownError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set; tokens are signed with the default secret")

    await init_db()

    if settings.seed_on_startup:
        try:
            await seed_if_empty()
        except Exception:
            # The service is usable without seed data
            logger.exception("Card seeding failed at startup")
    yield


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardtrader"),
    lifespan=lifespan,
)

app.include_router(auth_router)
app.include_router(cards_router)
app.include_router(health_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Render typed failures as the response envelope with their own status."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed or missing body fields are a 400, not FastAPI's default 422."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    response = ApiResponse.known_failure(
        kind=FailureKind.VALIDATION_FAILED,
        message="The request is missing or has invalid fields.",
        detail=problems or None,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json"),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures are known to be internal, whatever the statement was."""
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    error = InternalError(
        kind=FailureKind.INTERNAL_ERROR,
        message="The card store is unavailable. Please retry.",
        detail=type(exc).__name__,
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response().model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    response = ApiResponse.unknown_failure(detail=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response.model_dump(mode="json"),
    )


def run() -> None:
    """Serve the API with uvicorn."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
