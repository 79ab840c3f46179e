import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from echokey import EchoKeyService, TTLPolicy
from echokey.errors import CryptoUnavailable, StoreUnavailable, UnknownTransaction
from echokey.models import ConfirmationEvent
from echokey.networks import supported_networks
from echokey.signing import AuditSigner

from . import config
from .backends import SqliteAuditLog, SqliteSignalBackend, SqliteTransactionRepository, verify_audit_chain
from .db import close_connection, get_db_stats, init_db
from .logging_config import audit_log, configure_logging, set_request_id
from .models import ConfirmationRequest, CreateTransactionRequest, IssueSignalRequest, RefreshRequest, ValidateRequest
from .rate_limit import RateLimiter
from .security import InputError, validate_transaction_id

logger = logging.getLogger(__name__)

app = FastAPI(title="EchoKey Signal Service", debug=config.is_debug())

validate_limiter = RateLimiter(config.VALIDATE_RPM)
SERVICE: Optional[EchoKeyService] = None
SIGNER: Optional[AuditSigner] = None


def _on_renewed(scheduler, signal):
    audit_log.signal_refreshed(signal.transaction_id, signal.code, signal.expires_at_iso)


def _on_refresh_stopped(scheduler):
    audit_log.refresh_stopped(scheduler.transaction_id, scheduler.state.value, scheduler.renewals)


def build_service(signer: AuditSigner) -> EchoKeyService:
    return EchoKeyService(
        secret=config.get_secret(),
        signal_backend=SqliteSignalBackend(),
        transactions=SqliteTransactionRepository(),
        audit_log=SqliteAuditLog(signer),
        ttl_policy=TTLPolicy(config.TTL_FLOOR_SECONDS, config.TTL_MULTIPLIER),
        refresh_interval_seconds=config.REFRESH_INTERVAL_SECONDS,
        refresh_threshold_seconds=config.REFRESH_THRESHOLD_SECONDS,
        on_renewed=_on_renewed,
        on_refresh_stopped=_on_refresh_stopped,
    )


@app.on_event("startup")
def _startup():
    global SERVICE, SIGNER
    configure_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE or None)
    issues = config.validate_config()
    for issue in issues:
        logger.warning("Configuration issue: %s", issue)
    if issues and config.is_production():
        raise config.ConfigError("; ".join(issues))
    init_db()
    if SERVICE is not None:
        SERVICE.close()
    SIGNER = AuditSigner.load_or_create(config.AUDIT_SIGNING_KEY_PATH, config.AUDIT_KID)
    SERVICE = build_service(SIGNER)


@app.on_event("shutdown")
def _shutdown():
    if SERVICE is not None:
        SERVICE.close()
    close_connection()


@app.middleware("http")
async def _request_id(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(UnknownTransaction)
async def _unknown_transaction(request: Request, exc: UnknownTransaction):
    return JSONResponse(status_code=404, content={"detail": "UNKNOWN_TRANSACTION"})


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable):
    logger.error("Store unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "STORE_UNAVAILABLE"})


@app.exception_handler(CryptoUnavailable)
async def _crypto_unavailable(request: Request, exc: CryptoUnavailable):
    audit_log.security_event("crypto_unavailable", severity="critical", error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "CRYPTO_UNAVAILABLE"})


def _path_transaction_id(transaction_id: str) -> str:
    try:
        return validate_transaction_id(transaction_id)
    except InputError as e:
        raise HTTPException(422, e.message)


# ============================================================
# Transactions (Channel 1)
# ============================================================

@app.post("/transactions")
async def create_transaction(req: CreateTransactionRequest):
    record = await SERVICE.create_transaction(req.sender, req.recipient, req.amount, req.network_id)
    audit_log.transaction_created(record.id, record.network_id)
    return record.to_dict()


@app.get("/transactions")
async def list_transactions():
    return [record.to_dict() for record in await SERVICE.list_transactions()]


@app.delete("/transactions")
async def clear_transactions():
    return {"cleared": await SERVICE.clear_transactions()}


# ============================================================
# Signals (Channel 2)
# ============================================================

@app.post("/signals")
async def issue_signal(req: IssueSignalRequest):
    record = await SERVICE.get_transaction(req.transaction_id)
    network_id = req.network_id or record.network_id
    signal = await SERVICE.issue_signal(record.id, network_id)
    audit_log.signal_issued(signal.transaction_id, signal.code, signal.window_seconds)
    body = signal.to_dict()
    body["network_id"] = network_id
    body["window_seconds"] = signal.window_seconds
    return body


@app.get("/signals/{transaction_id}")
async def get_signal(transaction_id: str):
    signal = await SERVICE.get_signal(_path_transaction_id(transaction_id))
    if signal is None:
        raise HTTPException(404, "NO_SIGNAL")
    scheduler = SERVICE.refreshers.get(signal.transaction_id)
    body = signal.to_dict()
    body["window_seconds"] = signal.window_seconds
    body["time_left_seconds"] = round(max(0.0, signal.time_left(SERVICE.clock.now())), 3)
    body["refresh_state"] = scheduler.state.value if scheduler else None
    return body


@app.post("/signals/{transaction_id}/refresh")
async def start_refresh(transaction_id: str, req: Optional[RefreshRequest] = None):
    record = await SERVICE.get_transaction(_path_transaction_id(transaction_id))
    network_id = req.network_id if req and req.network_id else record.network_id
    scheduler = await SERVICE.start_refresh(record.id, network_id)
    return {"transaction_id": record.id, "network_id": network_id, "state": scheduler.state.value}


@app.delete("/signals/{transaction_id}/refresh")
async def stop_refresh(transaction_id: str):
    return {"stopped": SERVICE.stop_refresh(_path_transaction_id(transaction_id))}


# ============================================================
# Validation
# ============================================================

@app.post("/validate")
async def validate(req: ValidateRequest):
    if not validate_limiter.allow(req.transaction_id):
        audit_log.rate_limit_exceeded(req.transaction_id, "/validate")
        raise HTTPException(429, "RATE_LIMIT")
    outcome = await SERVICE.validate(req.transaction_id, req.code, req.issued_at)
    audit_log.validation_decision(req.transaction_id, outcome.approved, outcome.code.value, outcome.elapsed_seconds)
    body = outcome.to_dict()
    body["transaction_id"] = req.transaction_id
    return body


@app.get("/logs")
async def list_logs():
    return [entry.to_dict() for entry in await SERVICE.list_validation_log()]


@app.delete("/logs")
async def clear_logs():
    cleared = await SERVICE.clear_validation_log()
    audit_log.security_event("validation_log_cleared", severity="medium")
    return {"cleared": cleared}


@app.get("/logs/verify")
def verify_logs():
    result = verify_audit_chain(SIGNER.verify_key_b64)
    if not result["ok"]:
        audit_log.security_event("audit_chain_invalid", severity="high", errors=len(result["errors"]))
    result["key"] = SIGNER.public_entry()
    return result


# ============================================================
# Confirmations
# ============================================================

@app.post("/confirmations")
async def confirm(req: ConfirmationRequest):
    event = ConfirmationEvent(
        transaction_id=req.transaction_id,
        confirmed=req.confirmed,
        block_number=req.block_number,
        timestamp=SERVICE.clock.now(),
    )
    audit_log.confirmation_received(event.transaction_id, event.block_number)
    delivered = await SERVICE.publish_confirmation(event)
    return {
        "transaction_id": event.transaction_id,
        "delivered": delivered,
        "refresh_active": SERVICE.refreshers.get(event.transaction_id) is not None,
    }


@app.get("/healthz")
def healthz():
    return {
        "status": "ok",
        "env": config.ENV,
        "networks": supported_networks(),
        "db": get_db_stats(),
        "config_issues": config.validate_config(),
    }
