"""
HTTP entry points for collaborators (ownership ledger, sale front end).

The caller identity arrives in the X-Caller header; authenticating it is the
host environment's job. Run with:

    uvicorn couponmint.api:create_app --factory
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config
from .engine import IssuanceEngine
from .errors import CouponMintError, ErrorCode
from .identity import normalize_identity
from .logging_config import audit_log, configure_logging, set_request_id
from .models import (
    CouponIssueRequest,
    CouponVerifyRequest,
    DepositRequest,
    IdentityRequest,
    IssueRequest,
    PhaseRequest,
    PriceRequest,
    RoyaltyRequest,
)
from .rate_limit import IssuanceThrottle
from .store import SqliteStateStore

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.WRONG_PHASE: 409,
    ErrorCode.TRANSFER_FAILED: 409,
    ErrorCode.INSUFFICIENT_PAYMENT: 402,
}


def caller_identity(x_caller: Optional[str] = Header(None)) -> str:
    if not x_caller:
        raise HTTPException(401, "MISSING_CALLER")
    return normalize_identity(x_caller)


def engine_from_config() -> IssuanceEngine:
    problems = config.validate_config()
    for problem in problems:
        logger.error("configuration problem: %s", problem)
    if problems:
        raise RuntimeError(f"invalid configuration: {'; '.join(problems)}")
    store = SqliteStateStore(config.DB_PATH) if config.DB_PATH else None
    return IssuanceEngine(store=store, **config.engine_settings())


def create_app(
    engine: Optional[IssuanceEngine] = None,
    throttle: Optional[IssuanceThrottle] = None,
) -> FastAPI:
    if engine is None:
        configure_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE or None)
        engine = engine_from_config()
    throttle = throttle or IssuanceThrottle(config.ISSUE_RPM)

    app = FastAPI(
        title="couponmint",
        debug=config.is_debug(),
        docs_url=None if config.is_production() else "/docs",
    )
    app.state.engine = engine

    @app.exception_handler(CouponMintError)
    async def _coupon_mint_error(request: Request, exc: CouponMintError):
        return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 400), content=exc.to_dict())

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    def throttled(caller: str) -> None:
        result = throttle.check(caller)
        if not result.allowed:
            audit_log.security_event("rate_limited", severity="low", caller=caller)
            raise HTTPException(
                429, "RATE_LIMIT", headers={"Retry-After": str(int(result.retry_after or 0) + 1)}
            )

    # -- reads --

    @app.get("/state")
    def state():
        return engine.summary()

    @app.get("/royalty/{unit_id}")
    def royalty(unit_id: int, sale_price: int):
        receiver, amount = engine.royalty_info(unit_id, sale_price)
        return {"receiver": receiver, "amount": amount}

    @app.get("/splitters")
    def splitters():
        return [rec.to_dict() for rec in engine.list_records()]

    @app.get("/splitters/{index}")
    def splitter(index: int):
        d = engine.get_record(index).to_dict()
        d["balance"] = engine.treasury.balance_of_record(index)
        return d

    @app.get("/units/{unit_id}")
    def unit(unit_id: int):
        return engine.splitter_for(unit_id).to_dict()

    # -- authority --

    @app.post("/phase")
    def set_phase(req: PhaseRequest, caller: str = Depends(caller_identity)):
        previous = engine.set_phase(caller, req.phase)
        return {"previous": int(previous), "phase": int(engine.phase)}

    @app.post("/price")
    def set_price(req: PriceRequest, caller: str = Depends(caller_identity)):
        engine.set_price(caller, req.price)
        return {"price": engine.price}

    @app.post("/royalty")
    def set_royalty(req: RoyaltyRequest, caller: str = Depends(caller_identity)):
        engine.set_royalty(caller, req.receiver, req.basis_points)
        receiver, basis_points = engine.royalty
        return {"receiver": receiver, "basis_points": basis_points}

    @app.post("/authority")
    def transfer_authority(req: IdentityRequest, caller: str = Depends(caller_identity)):
        engine.transfer_authority(caller, req.identity)
        return {"authority": engine.authority}

    @app.post("/coupon-signer")
    def set_coupon_signer(req: IdentityRequest, caller: str = Depends(caller_identity)):
        engine.set_coupon_signer(caller, req.identity)
        return {"coupon_signer": engine.coupon_signer}

    @app.post("/proceeds/withdraw")
    def withdraw_proceeds(caller: str = Depends(caller_identity)):
        amount = engine.withdraw_proceeds(caller)
        return {"receiver": caller, "amount": amount}

    # -- issuance --

    @app.post("/issue")
    def issue(req: IssueRequest, caller: str = Depends(caller_identity)):
        throttled(caller)
        indices = engine.issue(req.quantity, req.payment, caller)
        return {"unit_ids": indices, "splitters": indices}

    @app.post("/presale/issue")
    def presale_issue(req: CouponIssueRequest, caller: str = Depends(caller_identity)):
        throttled(caller)
        indices = engine.issue_with_coupon(
            req.quantity,
            req.payment,
            caller,
            req.category,
            req.coupon.model_dump(exclude_none=True),
        )
        return {"unit_ids": indices, "splitters": indices}

    @app.post("/coupons/verify")
    def verify_coupon(req: CouponVerifyRequest):
        valid = engine.verify_coupon(
            req.category, req.beneficiary, req.coupon.model_dump(exclude_none=True)
        )
        return {"valid": valid}

    # -- splitters --

    @app.post("/splitters/{index}/deposit")
    def deposit(index: int, req: DepositRequest):
        return {"index": index, "balance": engine.deposit(index, req.amount)}

    @app.post("/splitters/{index}/withdraw")
    def withdraw(index: int):
        return engine.withdraw(index).to_dict()

    return app
