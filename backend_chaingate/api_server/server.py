"""
FastAPI server — command surface over the verification service.

Exposes POST /link, POST /verify, GET /status/{identity_id}, GET /stats and
GET /health. Handlers delegate to CommandService; the lifespan starts and stops
the auto-verify worker when ENABLE_AUTO_VERIFY is on.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend_chaingate import __version__
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.core.exceptions import (
    ContractNotFoundError,
    CooldownActiveError,
    IdentityNotLinkedError,
    InvalidWalletError,
    WalletAlreadyLinkedError,
)
from backend_chaingate.services import Services

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------

class LinkRequest(BaseModel):
    """POST /link body; surrounding whitespace is stripped before length checks."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identity_id: str = Field(..., min_length=1, max_length=64, description="Platform user id")
    wallet: str = Field(..., min_length=1, max_length=64, description="0x-prefixed EVM address")


class LinkResponse(BaseModel):
    identity_id: str
    wallet: str = Field(..., description="Normalized (lowercase) wallet address")
    linked_at: int
    created: bool = Field(..., description="False if the identical link already existed")


class VerifyRequest(BaseModel):
    """POST /verify body; contract is an id or display name, omitted for all contracts."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identity_id: str = Field(..., min_length=1, max_length=64)
    contract: str | None = Field(None, max_length=64)


class ContractVerificationModel(BaseModel):
    contract_id: str
    name: str
    status: str
    reason: str
    tx_hash: str | None = None
    role_granted: bool | None = None


class VerifyResponse(BaseModel):
    identity_id: str
    wallet: str
    results: list[ContractVerificationModel]
    newly_verified: list[str]


class ContractStatusModel(BaseModel):
    contract_id: str
    name: str
    verified: bool
    tx_hash: str | None = None
    confirmed_at: int | None = None


class StatusResponse(BaseModel):
    identity_id: str
    wallet: str
    linked_at: int
    verified_count: int
    total_contracts: int
    percentage: int = Field(..., ge=0, le=100)
    contracts: list[ContractStatusModel]


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------

def _error(status_code: int, exc: Exception, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the ASGI app. When services is None they are built from the
    environment at startup (load_settings + build_services).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            from backend_chaingate.config import load_settings
            from backend_chaingate.services import build_services

            app.state.services = build_services(load_settings())
        svc: Services = app.state.services
        if svc.settings.auto_verify_enabled:
            svc.worker.start()
        else:
            logger.info("auto_verify_disabled")

        yield

        if svc.settings.auto_verify_enabled:
            svc.worker.stop()
        if owned:
            svc.close()
        logger.info("api_shutdown_complete")

    app = FastAPI(
        title="ChainGate API",
        description="Link wallets and verify on-chain contract interactions for role grants.",
        version=__version__,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.exception_handler(InvalidWalletError)
    def invalid_wallet_handler(request: Request, exc: InvalidWalletError) -> JSONResponse:
        return _error(400, exc)

    @app.exception_handler(WalletAlreadyLinkedError)
    def already_linked_handler(request: Request, exc: WalletAlreadyLinkedError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(IdentityNotLinkedError)
    def not_linked_handler(request: Request, exc: IdentityNotLinkedError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ContractNotFoundError)
    def contract_not_found_handler(request: Request, exc: ContractNotFoundError) -> JSONResponse:
        return _error(404, exc, available=exc.available)

    @app.exception_handler(CooldownActiveError)
    def cooldown_handler(request: Request, exc: CooldownActiveError) -> JSONResponse:
        retry_after = max(1, round(exc.retry_after))
        response = _error(429, exc, retry_after=retry_after)
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException."""
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.post("/link", response_model=LinkResponse)
    def link(body: LinkRequest, request: Request) -> JSONResponse:
        """Link a wallet to an identity; 201 when created, 200 when already identical."""
        svc = get_services(request)
        linked, created = svc.commands.link_wallet(body.identity_id, body.wallet)
        payload = LinkResponse(
            identity_id=linked.identity_id,
            wallet=linked.wallet,
            linked_at=linked.linked_at,
            created=created,
        )
        return JSONResponse(status_code=201 if created else 200, content=payload.model_dump())

    @app.post("/verify", response_model=VerifyResponse)
    def verify(body: VerifyRequest, request: Request) -> VerifyResponse:
        svc = get_services(request)
        report = svc.commands.verify_now(body.identity_id, body.contract)
        return VerifyResponse(**report.to_dict())

    @app.get("/status/{identity_id}", response_model=StatusResponse)
    def status(identity_id: str, request: Request) -> StatusResponse:
        svc = get_services(request)
        return StatusResponse(**svc.commands.status(identity_id.strip()).to_dict())

    @app.get("/stats")
    def stats(request: Request) -> dict[str, Any]:
        return get_services(request).commands.stats()

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        svc = get_services(request)
        return {
            "status": "ok",
            "auto_verify_running": svc.worker.is_running,
            "contracts": len(svc.settings.contracts),
        }

    return app
