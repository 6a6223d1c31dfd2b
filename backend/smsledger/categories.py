import re
from typing import List, Optional, Sequence, Tuple

from .schemas import Category, CategoryProposal, Transaction

UPI_FALLBACK_CATEGORY = "UPI Payment"
OTHER_CATEGORY = "Other"

KEYWORD_SCORE = 0.3
UPI_BONUS = 0.2

# ----------------- Parse-time rules -----------------

DEFAULT_RULES: List[Tuple[str, str]] = [
    (r"\b(swiggy|zomato|restaurant|food|dining|cafe|pizza|burger)", "Food & Dining"),
    (r"\b(uber|ola|metro|bus|taxi|fuel|petrol|diesel|parking)", "Transportation"),
    (r"\b(amazon|flipkart|myntra|shopping|store|mall|purchase)", "Shopping"),
    (r"\b(netflix|spotify|movie|entertainment|game|subscription)", "Entertainment"),
    (r"\b(electricity|water|gas|mobile|internet|recharge|bill)", "Bills & Utilities"),
    (r"\b(hospital|doctor|medical|pharmacy|health|medicine)", "Healthcare"),
    (r"\b(mutual|fund|sip|investment|stock|trading)", "Investment"),
]

COMPILED_RULES = [(re.compile(pat, re.IGNORECASE), cat) for pat, cat in DEFAULT_RULES]

# Seed for the category store; only written when the store has no categories.
DEFAULT_CATEGORIES: Tuple[Category, ...] = (
    Category(id="food", name="Food & Dining",
             keywords=["swiggy", "zomato", "restaurant", "food", "cafe", "dining"]),
    Category(id="transport", name="Transportation",
             keywords=["uber", "ola", "metro", "bus", "fuel", "petrol", "diesel"]),
    Category(id="shopping", name="Shopping",
             keywords=["amazon", "flipkart", "myntra", "shopping", "store"]),
    Category(id="bills", name="Bills & Utilities",
             keywords=["electricity", "water", "gas", "mobile", "internet", "bill"]),
    Category(id="entertainment", name="Entertainment",
             keywords=["netflix", "spotify", "movie", "entertainment", "subscription"]),
    Category(id="healthcare", name="Healthcare",
             keywords=["hospital", "doctor", "medical", "pharmacy", "health"]),
    Category(id="investment", name="Investment",
             keywords=["mutual", "fund", "sip", "investment", "stock", "trading"]),
    Category(id="income", name="Income",
             keywords=["salary", "income", "payment", "freelance", "business"]),
)


def initial_category(body: str, merchant: Optional[str], is_upi: bool) -> str:
    blob = f"{body or ''} {merchant or ''}".lower()
    for rgx, cat in COMPILED_RULES:
        if rgx.search(blob):
            return cat
    return UPI_FALLBACK_CATEGORY if is_upi else OTHER_CATEGORY


# ----------------- Enhancement -----------------

def keyword_hits(text: str, keywords: Sequence[str]) -> int:
    return sum(1 for kw in keywords if kw and kw.lower() in text)


def enhance_category(txn: Transaction, categories: Sequence[Category]) -> CategoryProposal:
    """
    Re-score a transaction against the configurable category list.

    Each category scores 0.3 per keyword found in the description + merchant
    text, plus 0.2 for UPI transactions with at least one hit. The best score
    only wins when it beats the transaction's current confidence; otherwise the
    current category and confidence come back unchanged. The first category
    wins ties.
    """
    text = f"{txn.description} {txn.merchant or ''}".lower()
    best = CategoryProposal(category=txn.category, confidence=txn.confidence)
    best_score = txn.confidence

    for category in categories:
        hits = keyword_hits(text, category.keywords)
        score = KEYWORD_SCORE * hits
        if txn.is_upi and hits > 0:
            score += UPI_BONUS
        if score > best_score:
            best_score = score
            best = CategoryProposal(category=category.name, confidence=min(score, 1.0))

    return best
