from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TransactionType = Literal["debit", "credit"]


def ensure_aware(value: datetime) -> datetime:
    # Naive values are UTC; SQLite hands them back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RawMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    sender: str
    body: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class Category(BaseModel):
    id: str = Field(min_length=1, max_length=80)
    name: str = Field(min_length=1, max_length=80)
    keywords: List[str] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        cleaned = []
        seen = set()
        for kw in value:
            word = str(kw).strip().lower()
            if not word or word in seen:
                continue
            seen.add(word)
            cleaned.append(word)
        return cleaned


class Transaction(BaseModel):
    id: str
    amount: Decimal = Field(gt=0)
    type: TransactionType
    description: str
    category: str
    date: datetime
    account: str
    balance: Optional[Decimal] = None
    merchant: Optional[str] = None
    upi_id: Optional[str] = None
    is_upi: bool = False
    source_message_id: str
    bank_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_edited: bool = False
    raw_text: str = ""

    @field_validator("date")
    @classmethod
    def _aware_date(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class CategoryProposal(BaseModel):
    category: str
    confidence: float = Field(ge=0.0, le=1.0)


class TransactionEdit(BaseModel):
    """
    A manual correction. Only fields that are set to a value replace the stored
    ones; an explicit null leaves the field unchanged.
    """
    category: Optional[str] = Field(default=None, min_length=1, max_length=80)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    merchant: Optional[str] = None
    account: Optional[str] = None
