import json
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .categories import DEFAULT_CATEGORIES
from .logging_utils import log_event
from .models import CategoryRow, TransactionRow
from .schemas import Category, Transaction


class TransactionNotFound(LookupError):
    def __init__(self, txn_id: str):
        super().__init__(f"Transaction not found: {txn_id}")
        self.txn_id = txn_id


class TransactionStore(Protocol):
    def get_all(self) -> List[Transaction]: ...

    def get(self, txn_id: str) -> Optional[Transaction]: ...

    def save_batch(self, history: Sequence[Transaction]) -> None: ...

    def update_one(self, txn: Transaction) -> None: ...


class CategoryStore(Protocol):
    def get_all(self) -> List[Category]: ...

    def replace_all(self, categories: Sequence[Category]) -> List[Category]: ...


# ----------------- SQL -----------------

def row_to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        amount=row.amount,
        type=row.tx_type,
        description=row.description,
        category=row.category,
        date=row.date,
        account=row.account,
        balance=row.balance,
        merchant=row.merchant,
        upi_id=row.upi_id,
        is_upi=row.is_upi,
        source_message_id=row.source_message_id,
        bank_name=row.bank_name,
        confidence=row.confidence,
        is_edited=row.is_edited,
        raw_text=row.raw_text,
    )


def transaction_to_row(txn: Transaction) -> TransactionRow:
    return TransactionRow(
        id=txn.id,
        source_message_id=txn.source_message_id,
        amount=txn.amount,
        tx_type=txn.type,
        description=txn.description,
        category=txn.category,
        date=txn.date,
        account=txn.account,
        balance=txn.balance,
        merchant=txn.merchant,
        upi_id=txn.upi_id,
        is_upi=txn.is_upi,
        bank_name=txn.bank_name,
        confidence=txn.confidence,
        is_edited=txn.is_edited,
        raw_text=txn.raw_text,
    )


class SqlTransactionStore:
    def __init__(self, db: Session):
        self.db = db

    def get_all(self) -> List[Transaction]:
        rows = self.db.scalars(
            select(TransactionRow).order_by(TransactionRow.date.desc(), TransactionRow.id)
        ).all()
        return [row_to_transaction(r) for r in rows]

    def get(self, txn_id: str) -> Optional[Transaction]:
        row = self.db.get(TransactionRow, txn_id)
        return row_to_transaction(row) if row else None

    def save_batch(self, history: Sequence[Transaction]) -> None:
        """
        Persist the full merged history. Rows already stored are updated in
        place, new ones inserted; nothing is deleted.
        """
        try:
            for txn in history:
                self.db.merge(transaction_to_row(txn))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            log_event('error', 'store.save_batch_failed', size=len(history), error=str(exc))
            raise

    def update_one(self, txn: Transaction) -> None:
        row = self.db.get(TransactionRow, txn.id)
        if row is None:
            raise TransactionNotFound(txn.id)
        try:
            row.amount = txn.amount
            row.tx_type = txn.type
            row.description = txn.description
            row.category = txn.category
            row.account = txn.account
            row.balance = txn.balance
            row.merchant = txn.merchant
            row.upi_id = txn.upi_id
            row.is_upi = txn.is_upi
            row.confidence = txn.confidence
            row.is_edited = txn.is_edited
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            log_event('error', 'store.update_failed', txn_id=txn.id, error=str(exc))
            raise


def row_to_category(row: CategoryRow) -> Category:
    return Category(id=row.id, name=row.name, keywords=json.loads(row.keywords_json or "[]"))


class SqlCategoryStore:
    def __init__(self, db: Session, defaults: Sequence[Category] = DEFAULT_CATEGORIES):
        self.db = db
        self.defaults = defaults

    def get_all(self) -> List[Category]:
        rows = self.db.scalars(select(CategoryRow).order_by(CategoryRow.position)).all()
        if not rows:
            return self.replace_all(self.defaults)
        return [row_to_category(r) for r in rows]

    def replace_all(self, categories: Sequence[Category]) -> List[Category]:
        cleaned = sanitize_categories(categories)
        try:
            self.db.execute(delete(CategoryRow))
            self.db.add_all([
                CategoryRow(id=c.id, name=c.name, keywords_json=json.dumps(c.keywords), position=i)
                for i, c in enumerate(cleaned)
            ])
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return cleaned


def sanitize_categories(raw_categories: Sequence[Category]) -> List[Category]:
    cleaned = []
    seen = set()
    for c in raw_categories:
        if c.id in seen:
            continue
        seen.add(c.id)
        cleaned.append(c)
    return cleaned


# ----------------- In-memory -----------------

class InMemoryTransactionStore:
    """
    Keeps the history as a list of models; used by tests and scripts that do
    not need a database.
    """

    def __init__(self, history: Optional[Sequence[Transaction]] = None):
        self._history: List[Transaction] = list(history or [])

    def get_all(self) -> List[Transaction]:
        return list(self._history)

    def get(self, txn_id: str) -> Optional[Transaction]:
        return next((t for t in self._history if t.id == txn_id), None)

    def save_batch(self, history: Sequence[Transaction]) -> None:
        self._history = list(history)

    def update_one(self, txn: Transaction) -> None:
        for i, existing in enumerate(self._history):
            if existing.id == txn.id:
                self._history[i] = txn
                return
        raise TransactionNotFound(txn.id)


class InMemoryCategoryStore:
    def __init__(self, categories: Sequence[Category] = DEFAULT_CATEGORIES):
        self._categories: Dict[str, Category] = {c.id: c for c in sanitize_categories(categories)}

    def get_all(self) -> List[Category]:
        return list(self._categories.values())

    def replace_all(self, categories: Sequence[Category]) -> List[Category]:
        cleaned = sanitize_categories(categories)
        self._categories = {c.id: c for c in cleaned}
        return cleaned
