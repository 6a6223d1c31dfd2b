import os
import secrets
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .banks import BANK_PROFILES
from .db import SessionLocal, get_db, init_db
from .ledger import SmsLedger, current_balance, filter_transactions, monthly_spending, monthly_totals
from .logging_utils import configure_logging, log_event, reset_request_id, set_request_id
from .schemas import Category, RawMessage, Transaction, TransactionEdit, TransactionType
from .store import SqlCategoryStore, SqlTransactionStore, TransactionNotFound


configure_logging()

app = FastAPI(title="SMS Ledger API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if o.strip()] or ["http://localhost:8081", "http://127.0.0.1:8081"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started = datetime.now(timezone.utc)
    rid = request.headers.get("x-request-id") or secrets.token_hex(8)
    token = set_request_id(rid)
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        duration_ms = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
        log_event(
            'error',
            'http.request_failed',
            method=request.method,
            path=request.url.path,
            duration_ms=duration_ms,
        )
        raise
    finally:
        if response is not None:
            response.headers['X-Request-ID'] = rid
            duration_ms = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
            if request.url.path != '/health':
                status = int(response.status_code)
                req_level = 'error' if status >= 500 else 'warning' if status >= 400 else 'info'
                log_event(
                    req_level,
                    'http.request',
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )
        reset_request_id(token)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    level = 'warning' if int(exc.status_code) < 500 else 'error'
    log_event(
        level,
        'http.http_exception',
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        detail=str(exc.detail),
    )
    response = JSONResponse(status_code=exc.status_code, content={'detail': exc.detail})
    rid = request.headers.get('x-request-id')
    if rid:
        response.headers['X-Request-ID'] = rid
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    log_event(
        'warning',
        'http.validation_error',
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )
    response = JSONResponse(status_code=422, content={'detail': jsonable_errors(exc)})
    rid = request.headers.get('x-request-id')
    if rid:
        response.headers['X-Request-ID'] = rid
    return response


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx can hold Decimals or exception objects that JSONResponse cannot encode
    cleaned = []
    for err in exc.errors():
        err = dict(err)
        if 'ctx' in err:
            err['ctx'] = {k: str(v) for k, v in err['ctx'].items()}
        cleaned.append(err)
    return cleaned


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    db = SessionLocal()
    try:
        SqlCategoryStore(db).get_all()
    finally:
        db.close()


class ProcessRequest(BaseModel):
    messages: List[RawMessage]


class CategoriesRequest(BaseModel):
    categories: List[Category] = Field(min_length=1)


def get_ledger(db: Session = Depends(get_db)) -> SmsLedger:
    return SmsLedger(SqlTransactionStore(db), SqlCategoryStore(db))


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/banks")
def list_banks():
    return {"banks": [{"name": p.name, "sender_ids": list(p.sender_ids)} for p in BANK_PROFILES]}


@app.post("/api/sms/process")
def process_sms(req: ProcessRequest, ledger: SmsLedger = Depends(get_ledger)):
    """
    Parse a batch of bank SMS and merge it into the stored history. Messages
    that are not bank alerts are left out of the result.
    """
    txs = ledger.process_messages(req.messages)
    return {
        "transactions": [t.model_dump(mode="json") for t in txs],
        "count": len(txs),
        "rejected": len(req.messages) - len(txs),
    }


@app.get("/api/transactions")
def list_transactions(
    type: Optional[TransactionType] = None,
    is_upi: Optional[bool] = None,
    ledger: SmsLedger = Depends(get_ledger),
):
    txs = filter_transactions(ledger.history(), tx_type=type, is_upi=is_upi)
    return {"transactions": [t.model_dump(mode="json") for t in txs], "count": len(txs)}


@app.put("/api/transactions/{txn_id}", response_model=Transaction)
def edit_transaction(txn_id: str, payload: TransactionEdit, ledger: SmsLedger = Depends(get_ledger)):
    try:
        return ledger.edit_transaction(txn_id, payload)
    except TransactionNotFound as e:
        raise HTTPException(status_code=404, detail="Transaction not found.") from e


@app.post("/api/transactions/enhance")
def apply_enhancements(ledger: SmsLedger = Depends(get_ledger)):
    return {"updated": ledger.apply_enhancements()}


@app.post("/api/transactions/{txn_id}/enhance")
def propose_category(txn_id: str, ledger: SmsLedger = Depends(get_ledger)):
    try:
        proposal = ledger.propose_category(txn_id)
    except TransactionNotFound as e:
        raise HTTPException(status_code=404, detail="Transaction not found.") from e
    return proposal.model_dump()


@app.get("/api/categories")
def get_categories(db: Session = Depends(get_db)):
    return {"categories": [c.model_dump() for c in SqlCategoryStore(db).get_all()]}


@app.put("/api/categories")
def put_categories(payload: CategoriesRequest, db: Session = Depends(get_db)):
    categories = SqlCategoryStore(db).replace_all(payload.categories)
    log_event('info', 'categories.replaced', count=len(categories))
    return {"categories": [c.model_dump() for c in categories]}


@app.get("/api/summary/monthly")
def get_monthly_spending(
    year: int = Query(ge=1970, le=9999),
    month: int = Query(ge=1, le=12),
    ledger: SmsLedger = Depends(get_ledger),
):
    spending = monthly_spending(ledger.history(), year, month)
    return {"year": year, "month": month, "spending": {k: str(v) for k, v in spending.items()}}


@app.get("/api/summary/totals")
def get_monthly_totals(
    year: int = Query(ge=1970, le=9999),
    month: int = Query(ge=1, le=12),
    ledger: SmsLedger = Depends(get_ledger),
):
    totals = monthly_totals(ledger.history(), year, month)
    return {"year": year, "month": month, **{k: str(v) for k, v in totals.items()}}


@app.get("/api/summary/balance")
def get_current_balance(ledger: SmsLedger = Depends(get_ledger)):
    balance = current_balance(ledger.history())
    return {"balance": str(balance) if balance is not None else None}
