"""FastAPI server exposing the experiment ledger."""

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from labmarket import __version__
from labmarket.ledger import (
    ExperimentNotFoundError,
    LedgerError,
    PRIMARY_ONLY,
    Outcome,
    RoleMismatchError,
    TransferFailedError,
    require_role,
)
from labmarket.runtime import LedgerRuntime
from labmarket.services.assets import AssetError

logger = logging.getLogger(__name__)


# ============================================================================
# Request bodies
# ============================================================================


class CreateExperimentRequest(BaseModel):
    cost_min: int = Field(ge=0)
    cost_max: int = Field(ge=0)


class AmountRequest(BaseModel):
    amount: int = Field(ge=0)


class BetRequest(BaseModel):
    amount0: int = Field(default=0, ge=0)
    amount1: int = Field(default=0, ge=0)


class ParticipantsRequest(BaseModel):
    participants: list[str]


class ResultRequest(BaseModel):
    outcome: Outcome


class IdentityRequest(BaseModel):
    identity: str | None = None


class MintRequest(BaseModel):
    account: str
    amount: int = Field(ge=0)


def _status_for(error: LedgerError) -> int:
    if isinstance(error, RoleMismatchError):
        return 403
    if isinstance(error, ExperimentNotFoundError):
        return 404
    if isinstance(error, TransferFailedError):
        return 502
    return 409


def create_app(runtime: LedgerRuntime, persist: bool | None = None) -> FastAPI:
    """Build the API around ``runtime``.

    When ``persist`` is true (default: ``settings.api.persist``), the ledger
    state is saved to disk after every successful mutation.
    """
    settings = runtime.settings
    ledger = runtime.ledger
    if persist is None:
        persist = settings.api.persist

    app = FastAPI(title="labmarket API", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status_code = _status_for(exc)
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(AssetError)
    async def asset_error_handler(request: Request, exc: AssetError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"code": "ASSET_ERROR", "detail": str(exc), "account": exc.account},
        )

    def get_caller(request: Request) -> str:
        caller = request.headers.get(settings.api.caller_header)
        if not caller:
            raise HTTPException(
                status_code=401,
                detail=f"Missing {settings.api.caller_header} header",
            )
        return caller

    def committed(experiment_id: int | None = None, **extra: Any) -> dict[str, Any]:
        if persist:
            runtime.save()
        body: dict[str, Any] = {"status": "ok", **extra}
        if experiment_id is not None:
            body["experiment"] = ledger.get_experiment(experiment_id).model_dump(mode="json")
        return body

    def require_paper_mode() -> None:
        if not settings.assets.paper_mode:
            raise HTTPException(status_code=404, detail="Paper asset endpoints are disabled")

    # ------------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------------

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "version": __version__,
            "experiments": ledger.experiment_count(),
        }

    # ------------------------------------------------------------------------
    # Experiments
    # ------------------------------------------------------------------------

    @app.post("/api/experiments", status_code=201)
    def create_experiment(body: CreateExperimentRequest, caller: str = Depends(get_caller)):
        experiment_id = ledger.create_experiment(caller, body.cost_min, body.cost_max)
        return committed(experiment_id)

    @app.get("/api/experiments")
    def list_experiments():
        return [e.model_dump(mode="json") for e in ledger.list_experiments()]

    @app.get("/api/experiments/{experiment_id}")
    def get_experiment(experiment_id: int):
        return ledger.get_experiment(experiment_id).model_dump(mode="json")

    @app.get("/api/experiments/{experiment_id}/positions/{participant}")
    def get_position(experiment_id: int, participant: str):
        return ledger.get_position(experiment_id, participant).model_dump(mode="json")

    @app.get("/api/experiments/{experiment_id}/quote/{participant}")
    def quote_payout(experiment_id: int, participant: str):
        return ledger.quote_payout(experiment_id, participant).model_dump(mode="json")

    # ------------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------------

    @app.post("/api/experiments/{experiment_id}/deposit")
    def deposit(experiment_id: int, body: AmountRequest, caller: str = Depends(get_caller)):
        ledger.deposit(caller, experiment_id, body.amount)
        return committed(experiment_id)

    @app.post("/api/experiments/{experiment_id}/undeposit")
    def undeposit(experiment_id: int, caller: str = Depends(get_caller)):
        amount = ledger.undeposit(caller, experiment_id)
        return committed(experiment_id, refunded=amount)

    @app.post("/api/experiments/{experiment_id}/withdraw")
    def admin_withdraw(experiment_id: int, caller: str = Depends(get_caller)):
        amount = ledger.admin_withdraw(caller, experiment_id)
        return committed(experiment_id, withdrawn=amount)

    @app.post("/api/experiments/{experiment_id}/close")
    def admin_close(experiment_id: int, caller: str = Depends(get_caller)):
        ledger.admin_close(caller, experiment_id)
        return committed(experiment_id)

    @app.post("/api/experiments/{experiment_id}/refund")
    def admin_refund(
        experiment_id: int, body: ParticipantsRequest, caller: str = Depends(get_caller)
    ):
        refunded = ledger.admin_refund(caller, experiment_id, body.participants)
        return committed(experiment_id, refunded=refunded)

    # ------------------------------------------------------------------------
    # Betting
    # ------------------------------------------------------------------------

    @app.post("/api/experiments/{experiment_id}/bet")
    def bet(experiment_id: int, body: BetRequest, caller: str = Depends(get_caller)):
        ledger.bet(caller, experiment_id, body.amount0, body.amount1)
        return committed(experiment_id)

    @app.post("/api/experiments/{experiment_id}/return-bets")
    def admin_return_bet(
        experiment_id: int, body: ParticipantsRequest, caller: str = Depends(get_caller)
    ):
        returned = ledger.admin_return_bet(caller, experiment_id, body.participants)
        return committed(experiment_id, returned=returned)

    @app.post("/api/experiments/{experiment_id}/result")
    def admin_set_result(
        experiment_id: int, body: ResultRequest, caller: str = Depends(get_caller)
    ):
        ledger.admin_set_result(caller, experiment_id, body.outcome)
        return committed(experiment_id)

    @app.post("/api/experiments/{experiment_id}/unbet")
    def unbet(experiment_id: int, caller: str = Depends(get_caller)):
        amount = ledger.unbet(caller, experiment_id)
        return committed(experiment_id, returned=amount)

    @app.post("/api/experiments/{experiment_id}/claim")
    def claim_bet_profit(experiment_id: int, caller: str = Depends(get_caller)):
        payout = ledger.claim_bet_profit(caller, experiment_id)
        return committed(experiment_id, payout=payout)

    # ------------------------------------------------------------------------
    # Participants and roles
    # ------------------------------------------------------------------------

    @app.get("/api/participants/{participant}/funded")
    def funded_experiments(participant: str):
        return [f.model_dump() for f in ledger.funded_experiments(participant)]

    @app.get("/api/roles")
    def get_roles():
        return ledger.roles().model_dump()

    @app.get("/api/roles/{identity}")
    def role_of(identity: str):
        return {"identity": identity, "role": ledger.role_of(identity).value}

    @app.post("/api/roles/primary")
    def set_primary(body: IdentityRequest, caller: str = Depends(get_caller)):
        ledger.set_primary(caller, body.identity or "")
        return committed(roles=ledger.roles().model_dump())

    @app.post("/api/roles/secondary")
    def set_secondary(body: IdentityRequest, caller: str = Depends(get_caller)):
        ledger.set_secondary(caller, body.identity)
        return committed(roles=ledger.roles().model_dump())

    # ------------------------------------------------------------------------
    # Paper assets
    # ------------------------------------------------------------------------

    @app.get("/api/assets/balances/{account}")
    def balance_of(account: str):
        with ledger.consistent_view():
            return {
                "account": account,
                "symbol": runtime.token.symbol,
                "balance": runtime.token.balance_of(account),
                "allowance": runtime.token.allowance(account, runtime.assets.account),
            }

    @app.post("/api/assets/mint", dependencies=[Depends(require_paper_mode)])
    def mint(body: MintRequest, caller: str = Depends(get_caller)):
        """Paper faucet, restricted to the primary role."""
        require_role(caller, ledger.roles(), PRIMARY_ONLY, "mint")
        balance = runtime.fund(body.account, body.amount)
        return committed(account=body.account, balance=balance)

    @app.post("/api/assets/approve", dependencies=[Depends(require_paper_mode)])
    def approve(body: AmountRequest, caller: str = Depends(get_caller)):
        allowance = runtime.approve_pool(caller, body.amount)
        return committed(account=caller, allowance=allowance)

    logger.info(f"Created labmarket API (persist={persist})")
    return app
