"""
HTTP surface for the billing core.

POST /confirm runs a paid generation; the read-only wallet and
transaction views feed account pages and admin reporting.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .auth import get_identity
from wallet_guard.config.loader import AuthConfig, BillingConfig
from wallet_guard.core.billing import BillingService, ConfirmRequest, error_outcome
from wallet_guard.core.correlation import new_correlation_id
from wallet_guard.core.errors import BillingError, ErrorKind

logger = logging.getLogger(__name__)

router = APIRouter()


class ConfirmPayload(BaseModel):
    # Loosely typed; BillingService validates and answers BAD_INPUT
    message: Any = None
    model: Any = None
    estimatedCost: Any = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


def _service(request: Request) -> BillingService:
    return request.app.state.service


def _unauthorized(correlation_id: str) -> JSONResponse:
    outcome = error_outcome(
        BillingError(ErrorKind.UNAUTHORIZED, "User not authenticated"), correlation_id
    )
    return JSONResponse(status_code=outcome.status, content=outcome.body)


@router.post("/confirm")
async def confirm(
    payload: ConfirmPayload,
    request: Request,
    identity: Optional[str] = Depends(get_identity),
):
    correlation_id = new_correlation_id()
    service = _service(request)
    confirm_request = ConfirmRequest(
        message=payload.message,
        model=payload.model,
        estimated_cost=payload.estimatedCost,
        temperature=payload.temperature,
        max_tokens=payload.max_tokens,
    )
    # Shielded: a client disconnect must not abandon a debit mid-flight
    outcome = await asyncio.shield(
        run_in_threadpool(service.confirm, identity, confirm_request, correlation_id)
    )
    return JSONResponse(
        status_code=outcome.status,
        content=outcome.body,
        headers={"X-Correlation-Id": correlation_id},
    )


@router.get("/wallet")
async def wallet(request: Request, identity: Optional[str] = Depends(get_identity)):
    correlation_id = new_correlation_id()
    if identity is None:
        return _unauthorized(correlation_id)
    service = _service(request)
    wallet = await run_in_threadpool(service.ledger.get_wallet, identity)
    return {
        "balance": float(wallet.balance) if wallet else 0.0,
        "currency": wallet.currency if wallet else service.config.wallet.currency,
        "updatedAt": wallet.updated_at.isoformat() if wallet else None,
        "correlationId": correlation_id,
    }


@router.get("/transactions")
async def transactions(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    identity: Optional[str] = Depends(get_identity),
):
    correlation_id = new_correlation_id()
    if identity is None:
        return _unauthorized(correlation_id)
    rows = await run_in_threadpool(_service(request).ledger.history, identity, limit)
    return {
        "transactions": [
            {
                "id": t.id,
                "type": t.type.value,
                "rawAmount": float(t.raw_amount),
                "settledAmount": float(t.settled_amount),
                "currency": t.currency,
                "reason": t.reason,
                "createdAt": t.created_at.isoformat(),
                "correlationId": t.correlation_id,
            }
            for t in reversed(rows)
        ],
        "correlationId": correlation_id,
    }


@router.get("/models")
async def models(request: Request):
    return {"models": _service(request).orchestrator.catalog.list_models()}


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    outcome = error_outcome(
        BillingError(ErrorKind.BAD_INPUT, "Malformed request body"), new_correlation_id()
    )
    return JSONResponse(status_code=outcome.status, content=outcome.body)


def create_app(service: BillingService, auth_config: Optional[AuthConfig] = None) -> FastAPI:
    """Build the FastAPI application around a configured BillingService."""
    app = FastAPI(title="wallet_guard", version="0.1.0")
    app.state.service = service
    app.state.auth_config = auth_config or service.config.auth
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router)
    return app


def create_app_from_config(config: BillingConfig) -> FastAPI:
    """Build the app against SQLite storage and the providers with API keys."""
    from wallet_guard.providers import build_provider_clients
    from wallet_guard.storage.repository import SQLiteStore, initialize_schema

    initialize_schema(config.storage.db_path)
    store = SQLiteStore(config.storage.db_path)
    clients = build_provider_clients()
    logger.info("Providers configured: %s", ", ".join(sorted(clients)) or "none")
    service = BillingService.from_config(config, store, clients)
    return create_app(service, config.auth)
