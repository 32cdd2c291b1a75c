from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from coordinator.config import engine, settings
from coordinator.digest import Domain
from coordinator.engine import SettlementEngine
from coordinator.errors import SettlementError
from coordinator.middleware import IdempotencyMiddleware, RequestIdMiddleware
from coordinator.models import Base
from coordinator.routes import splits, tokens, webhooks
from coordinator.schemas import DomainResponse, ErrorDetail, ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    yield


def build_domain() -> Domain:
    return Domain(
        name=settings.domain_name,
        version=settings.domain_version,
        chain_id=settings.chain_id,
        verifying_contract=settings.instance_address,
    )


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            request_id=getattr(request.state, "request_id", ""),
            details={"category": exc.category, **(exc.details or {})},
        )
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app() -> FastAPI:
    app = FastAPI(
        title="Split Settlement Coordinator",
        version="0.1.0",
        description=(
            "Non-custodial bill-splitting settlement. Participants sign EIP-712 approvals "
            "for their share; the coordinator verifies every approval and pulls all shares "
            "to the payer in one atomic settlement."
        ),
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "Health", "description": "Service health check"},
            {"name": "Domain", "description": "EIP-712 signing domain of this instance"},
            {"name": "Splits", "description": "Split creation, approval digests and settlement"},
            {"name": "Tokens", "description": "Development token ledger balances and allowances"},
            {"name": "Webhooks", "description": "Split event subscriptions"},
        ],
    )

    # Domain separator is derived once here for the lifetime of the process.
    app.state.settlement_engine = SettlementEngine(build_domain())

    app.add_middleware(IdempotencyMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(SettlementError, settlement_error_handler)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse()

    api_router = APIRouter()

    @api_router.get("/domain", response_model=DomainResponse, tags=["Domain"])
    def domain() -> DomainResponse:
        d: Domain = app.state.settlement_engine.domain
        return DomainResponse(
            name=d.name,
            version=d.version,
            chain_id=d.chain_id,
            verifying_contract=d.verifying_contract,
            separator="0x" + d.separator.hex(),
        )

    api_router.include_router(splits.router)
    api_router.include_router(tokens.router)
    api_router.include_router(webhooks.router)

    app.include_router(api_router, prefix="/v1")
    app.include_router(api_router, prefix="/api/v1")

    logger.info("Coordinator %s on chain %d", settings.instance_address, settings.chain_id)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "coordinator.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level,
    )
