"""FastAPI service exposing the weather insurance policy lifecycle."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from insurance.errors import (
    InsuranceError,
    NotFoundError,
    StateConflictError,
    UnknownCategoryError,
    ValidationError,
)
from insurance.lifecycle import PolicyLifecycleManager
from insurance.model import (
    ClaimResult,
    EligibilityCheck,
    Policy,
    PolicyCreate,
    PolicyPatch,
    Transaction,
    TransactionCreate,
    WeatherSnapshot,
    WeatherSnapshotPatch,
)
from jobs.config import options_payload, quote_premium
from jobs.refresh_weather import seed_weather_snapshots
from storage.backends import open_store

load_dotenv()

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: tuple[tuple[type[InsuranceError], int], ...] = (
    (ValidationError, 400),
    (UnknownCategoryError, 400),
    (NotFoundError, 404),
    (StateConflictError, 409),
)


def _seed_enabled() -> bool:
    return os.getenv("SEED_WEATHER_DATA", "true").strip().lower() not in {"0", "false", "no"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    store = open_store()
    if _seed_enabled():
        seed_weather_snapshots(store)
    app.state.store = store
    app.state.manager = PolicyLifecycleManager.for_store(store)
    try:
        yield
    finally:
        store.close()


app = FastAPI(title="Weather Insurance API", version="0.1.0", lifespan=lifespan)


def _configure_cors() -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )


_configure_cors()


@app.exception_handler(InsuranceError)
async def _insurance_error_handler(_: Request, exc: InsuranceError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error("Unhandled insurance error: %s", exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_manager(request: Request) -> PolicyLifecycleManager:
    return request.app.state.manager


class ClaimPayoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: Optional[str] = Field(None, alias="txHash")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/options")
def get_options() -> dict[str, Any]:
    return options_payload()


@app.get("/api/quote")
def get_quote(
    coverage: float = Query(..., gt=0, description="Payout amount requested"),
    duration: int = Query(..., gt=0, description="Cover length in days"),
) -> dict[str, float | int]:
    return {"coverage": coverage, "duration": duration, "premium": quote_premium(coverage, duration)}


# Policies -----------------------------------------------------------------
@app.get("/api/policies/{wallet_address}", response_model=list[Policy])
def list_policies(
    wallet_address: str, manager: PolicyLifecycleManager = Depends(get_manager)
):
    return manager.list_policies(wallet_address)


@app.get("/api/policy/{policy_id}", response_model=Policy)
def get_policy(policy_id: int, manager: PolicyLifecycleManager = Depends(get_manager)):
    return manager.get_policy(policy_id)


@app.post("/api/policies", response_model=Policy, status_code=201)
def create_policy(
    payload: PolicyCreate, manager: PolicyLifecycleManager = Depends(get_manager)
):
    return manager.create_policy(payload)


@app.patch("/api/policies/{policy_id}", response_model=Policy)
def update_policy(
    policy_id: int,
    payload: PolicyPatch,
    manager: PolicyLifecycleManager = Depends(get_manager),
):
    return manager.update_policy(policy_id, payload)


# Transactions -------------------------------------------------------------
@app.get("/api/transactions/{wallet_address}", response_model=list[Transaction])
def list_transactions(
    wallet_address: str, manager: PolicyLifecycleManager = Depends(get_manager)
):
    return manager.list_transactions(wallet_address)


@app.post("/api/transactions", response_model=Transaction, status_code=201)
def create_transaction(
    payload: TransactionCreate, manager: PolicyLifecycleManager = Depends(get_manager)
):
    return manager.create_transaction(payload)


# Weather ------------------------------------------------------------------
@app.get("/api/weather", response_model=list[WeatherSnapshot])
def list_weather(manager: PolicyLifecycleManager = Depends(get_manager)):
    return manager.list_weather_snapshots()


@app.get("/api/weather/{location}", response_model=WeatherSnapshot)
def get_weather(location: str, manager: PolicyLifecycleManager = Depends(get_manager)):
    return manager.get_weather_snapshot(location)


@app.patch("/api/weather/{location}", response_model=WeatherSnapshot)
def update_weather(
    location: str,
    payload: WeatherSnapshotPatch,
    manager: PolicyLifecycleManager = Depends(get_manager),
):
    return manager.update_weather_snapshot(location, payload)


# Lifecycle ----------------------------------------------------------------
@app.post("/api/check-eligibility/{policy_id}", response_model=EligibilityCheck)
def check_eligibility(policy_id: int, manager: PolicyLifecycleManager = Depends(get_manager)):
    return manager.check_eligibility(policy_id)


@app.post("/api/claim-payout/{policy_id}", response_model=ClaimResult)
def claim_payout(
    policy_id: int,
    payload: Optional[ClaimPayoutRequest] = None,
    manager: PolicyLifecycleManager = Depends(get_manager),
):
    return manager.claim_payout(policy_id, payload.tx_hash if payload else None)
