import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Pattern, Sequence

from .banks import BANK_PROFILES, BankProfile, resolve_sender
from .categories import initial_category
from .logging_utils import log_event
from .schemas import RawMessage, Transaction, TransactionType

AMOUNT_RE = re.compile(r"(?:\b(?:rs\.?|inr)|₹)\s*(\d+(?:,\d+)*\.\d{2})(?!\d)", re.IGNORECASE)  # Rs.1,25,000.00 or INR 150.00
UPI_ID_RE = re.compile(r"[a-zA-Z0-9.\-_]+@[a-zA-Z][a-zA-Z0-9.\-_]*[a-zA-Z0-9]")
ACCOUNT_DIGITS_RE = re.compile(r"\d{4}")

# Scoring only; unlike AMOUNT_RE the decimals are optional.
AMOUNT_SHAPE_RE = re.compile(r"(?:\b(?:rs\.?|inr)|₹)\s*\d+", re.IGNORECASE)
TYPE_KEYWORD_RE = re.compile(r"\b(?:debited|credited|spent|received)\b", re.IGNORECASE)
ACCOUNT_TOKEN_RE = re.compile(r"(?:a/c|acct|account)\D{0,12}\d{4}|[x*]{2,}\d{4}", re.IGNORECASE)

MERCHANT_PATTERNS = (
    # "at SWIGGY BANGALORE." / "from TECHCORP INDIA on 15-Jan", never "from your account"
    re.compile(
        r"\b(?:to|at|from)\s+(?!your\b)([A-Za-z][A-Za-z&' ]*?)(?=\s+(?:on|ref|upi|via|transaction|txn)\b|\s*[.,;]|\s*$)",
        re.IGNORECASE,
    ),
    # payee part of a UPI address
    re.compile(r"\b([a-zA-Z0-9.\-_]+)@[a-zA-Z]"),
    re.compile(r"\bmerchant\s*:?\s*([A-Za-z][A-Za-z&' ]*)", re.IGNORECASE),
)

DESCRIPTION_STOPWORDS = {
    "rs", "inr", "debited", "credited", "account", "a/c", "ref", "upi",
    "dear", "customer", "your", "from", "the", "and", "has", "been", "for",
    "avl", "available", "bal", "balance", "txn", "via",
}
DESCRIPTION_WORD_LIMIT = 4
FALLBACK_DESCRIPTION = "Bank transaction"
UNKNOWN_ACCOUNT = "Unknown Account"

BASE_CONFIDENCE = 0.5


@dataclass(frozen=True)
class ExtractedFields:
    amount: Optional[Decimal]
    type: Optional[TransactionType]
    balance: Optional[Decimal]
    is_upi: bool
    upi_id: Optional[str]
    merchant: Optional[str]
    account: str


def clean_spaces(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def parse_inr_amount(s: str) -> Optional[Decimal]:
    # Indian grouping uses commas only: 1,25,000.00
    try:
        value = Decimal(s.strip().replace(",", ""))
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def first_capture(patterns: Sequence[Pattern[str]], text: str) -> Optional[str]:
    for rgx in patterns:
        m = rgx.search(text)
        if m:
            return m.group(1) if rgx.groups else m.group(0)
    return None


def extract_amount(body: str) -> Optional[Decimal]:
    m = AMOUNT_RE.search(body or "")
    if not m:
        return None
    value = parse_inr_amount(m.group(1))
    if value is None or value <= 0:
        return None
    return value


def extract_type(body: str, profile: BankProfile) -> Optional[TransactionType]:
    """
    Debit rules are checked before credit rules, so a body that mentions both
    ("debited from A/c ... credited to A/c ...") is a debit.
    """
    text = body or ""
    if any(rgx.search(text) for rgx in profile.debit_patterns):
        return "debit"
    if any(rgx.search(text) for rgx in profile.credit_patterns):
        return "credit"
    return None


def extract_balance(body: str, profile: BankProfile) -> Optional[Decimal]:
    raw = first_capture(profile.balance_patterns, body or "")
    if raw is None:
        return None
    return parse_inr_amount(raw)


def is_upi_message(body: str, profile: BankProfile) -> bool:
    text = body or ""
    return any(rgx.search(text) for rgx in profile.upi_patterns)


def extract_upi_id(body: str) -> Optional[str]:
    m = UPI_ID_RE.search(body or "")
    return m.group(0) if m else None


def extract_merchant(body: str) -> Optional[str]:
    for rgx in MERCHANT_PATTERNS:
        m = rgx.search(body or "")
        if m:
            merchant = clean_spaces(m.group(1))
            if merchant:
                return merchant
    return None


def extract_account(body: str) -> str:
    m = ACCOUNT_DIGITS_RE.search(body or "")
    return f"****{m.group(0)}" if m else UNKNOWN_ACCOUNT


def extract_fields(body: str, profile: BankProfile) -> ExtractedFields:
    is_upi = is_upi_message(body, profile)
    return ExtractedFields(
        amount=extract_amount(body),
        type=extract_type(body, profile),
        balance=extract_balance(body, profile),
        is_upi=is_upi,
        upi_id=extract_upi_id(body) if is_upi else None,
        merchant=extract_merchant(body),
        account=extract_account(body),
    )


def score_confidence(body: str) -> float:
    text = body or ""
    confidence = BASE_CONFIDENCE
    if AMOUNT_SHAPE_RE.search(text):
        confidence += 0.2
    if TYPE_KEYWORD_RE.search(text):
        confidence += 0.2
    if ACCOUNT_TOKEN_RE.search(text):
        confidence += 0.1
    return round(min(confidence, 1.0), 4)


def generate_description(body: str, merchant: Optional[str], is_upi: bool) -> str:
    if merchant:
        return f"UPI payment to {merchant}" if is_upi else f"Transaction with {merchant}"

    words = []
    for raw in (body or "").lower().split():
        word = raw.strip(".,:;!?()[]\"'")
        if len(word) <= 2 or word in DESCRIPTION_STOPWORDS:
            continue
        words.append(word)
        if len(words) == DESCRIPTION_WORD_LIMIT:
            break
    return " ".join(words) or FALLBACK_DESCRIPTION


def make_transaction_id(message_id: str, assembled_at: datetime) -> str:
    return f"txn_{message_id}_{int(assembled_at.timestamp() * 1000)}"


def assemble_transaction(
    message: RawMessage,
    profiles: Sequence[BankProfile] = BANK_PROFILES,
    now: Optional[datetime] = None,
) -> Optional[Transaction]:
    """
    Turn one raw SMS into a Transaction, or return None when the message is not
    a usable bank alert (unknown sender, no amount, no debit/credit wording).
    """
    profile = resolve_sender(message.sender, profiles)
    if profile is None:
        log_event('debug', 'sms.message_rejected', message_id=message.id, reason='unrecognized_sender')
        return None

    fields = extract_fields(message.body, profile)
    if fields.amount is None:
        log_event('debug', 'sms.message_rejected', message_id=message.id, reason='missing_amount', bank=profile.name)
        return None
    if fields.type is None:
        log_event('debug', 'sms.message_rejected', message_id=message.id, reason='missing_type', bank=profile.name)
        return None

    assembled_at = now or datetime.now(timezone.utc)
    return Transaction(
        id=make_transaction_id(message.id, assembled_at),
        amount=fields.amount,
        type=fields.type,
        description=generate_description(message.body, fields.merchant, fields.is_upi),
        category=initial_category(message.body, fields.merchant, fields.is_upi),
        date=message.timestamp,
        account=fields.account,
        balance=fields.balance,
        merchant=fields.merchant,
        upi_id=fields.upi_id,
        is_upi=fields.is_upi,
        source_message_id=message.id,
        bank_name=profile.name,
        confidence=score_confidence(message.body),
        is_edited=False,
        raw_text=message.body,
    )
