import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from .schemas import RawMessage

AMOUNT_CAPTURE = r"(\d+(?:,\d+)*(?:\.\d{2})?)"

RUPEE = r"(?:rs\.?|₹)"
RUPEE_OR_INR = r"(?:rs\.?|inr|₹)"

COMMON_UPI_RULES = (
    r"\bupi\b",
    r"\bvpa\b",
    r"[a-z0-9.\-_]+@[a-z][a-z0-9.\-_]*",
    r"\b(?:paytm|gpay|google\s*pay|phonepe|amazon\s*pay|bhim)\b",
)

# Wallet apps send their own alerts; the SMS source keeps them for the UI even
# though no bank profile claims them.
WALLET_SENDER_IDS = ("PAYTM", "GPAY", "PHONEPE", "AMAZONPAY")


@dataclass(frozen=True)
class BankProfile:
    name: str
    sender_ids: Tuple[str, ...]
    debit_patterns: Tuple[Pattern[str], ...]
    credit_patterns: Tuple[Pattern[str], ...]
    balance_patterns: Tuple[Pattern[str], ...]
    upi_patterns: Tuple[Pattern[str], ...]

    def matches_sender(self, sender: str) -> bool:
        upper = (sender or "").upper()
        return any(sid in upper for sid in self.sender_ids)


def balance_rules(marker: str) -> Tuple[str, ...]:
    """
    Balance phrases always put the label before the amount, e.g.
    "Avl Bal: Rs.1,000.00" or "Available balance: INR 250.00".
    """
    return (
        rf"\b(?:avl\.?|available)?\s*bal(?:ance)?\b[^0-9]{{0,20}}?{marker}\s*{AMOUNT_CAPTURE}",
        rf"\bbal(?:ance)?\s+is\s+{marker}\s*{AMOUNT_CAPTURE}",
    )


def _compile(rules: Iterable[str]) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(rule, re.IGNORECASE) for rule in rules)


def build_profile(
    name: str,
    sender_ids: Sequence[str],
    debit: Sequence[str],
    credit: Sequence[str],
    balance: Sequence[str],
    upi: Sequence[str] = COMMON_UPI_RULES,
) -> BankProfile:
    return BankProfile(
        name=name,
        sender_ids=tuple(sid.strip().upper() for sid in sender_ids if sid.strip()),
        debit_patterns=_compile(debit),
        credit_patterns=_compile(credit),
        balance_patterns=_compile(balance),
        upi_patterns=_compile(upi),
    )


# Registry order matters: resolution returns the first profile whose sender id
# is a substring of the message sender.
BANK_PROFILES: Tuple[BankProfile, ...] = (
    build_profile(
        "State Bank of India",
        ["SBIALERT", "SBIUPI", "SBIPAY"],
        debit=[r"\bdebited\b", r"\bwithdrawn\b", r"\bspent\b", r"\b(?:sent|paid)\s+(?:to|for)\b"],
        credit=[r"\bcredited\b", r"\bdeposited\b", r"\breceived\b"],
        balance=balance_rules(RUPEE),
    ),
    build_profile(
        "HDFC Bank",
        ["HDFCBK", "HDFCUPI"],
        debit=[r"\bdebited\b", r"\bspent\b", r"\bsent\b", r"\bpaid\b"],
        credit=[r"\bcredited\b", r"\breceived\b"],
        balance=balance_rules(RUPEE_OR_INR),
    ),
    build_profile(
        "ICICI Bank",
        ["ICICIB", "ICICIUPI"],
        debit=[r"\bdebited\b", r"\bwithdrawn\b", r"\bsent\b", r"\bpaid\b"],
        credit=[r"\bcredited\b", r"\bdeposited\b", r"\breceived\b"],
        balance=balance_rules(RUPEE),
    ),
    build_profile(
        "Axis Bank",
        ["AXISBK", "AXISUPI"],
        debit=[r"\bdebited\b", r"\bspent\b", r"\bsent\b"],
        credit=[r"\bcredited\b", r"\breceived\b"],
        balance=balance_rules(RUPEE),
    ),
    build_profile(
        "Kotak Mahindra Bank",
        ["KOTAKBK"],
        debit=[r"\bdebited\b", r"\bsent\b", r"\bpaid\b", r"\bwithdrawn\b"],
        credit=[r"\bcredited\b", r"\breceived\b"],
        balance=balance_rules(RUPEE_OR_INR),
    ),
    build_profile(
        "Yes Bank",
        ["YESBNK"],
        debit=[r"\bdebited\b", r"\bspent\b", r"\bwithdrawn\b"],
        credit=[r"\bcredited\b", r"\bdeposited\b"],
        balance=balance_rules(RUPEE_OR_INR),
    ),
)


def resolve_sender(sender: str, profiles: Sequence[BankProfile] = BANK_PROFILES) -> Optional[BankProfile]:
    for profile in profiles:
        if profile.matches_sender(sender):
            return profile
    return None


def is_bank_sender(sender: str, profiles: Sequence[BankProfile] = BANK_PROFILES) -> bool:
    return resolve_sender(sender, profiles) is not None


def filter_bank_messages(
    messages: Iterable[RawMessage],
    profiles: Sequence[BankProfile] = BANK_PROFILES,
    extra_senders: Sequence[str] = WALLET_SENDER_IDS,
) -> List[RawMessage]:
    """
    Keep messages sent by a known bank or wallet, preserving order.
    """
    extras = tuple(s.upper() for s in extra_senders)
    kept: List[RawMessage] = []
    for msg in messages:
        upper = (msg.sender or "").upper()
        if is_bank_sender(msg.sender, profiles) or any(s in upper for s in extras):
            kept.append(msg)
    return kept
