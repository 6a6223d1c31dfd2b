import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .banks import BANK_PROFILES, BankProfile
from .categories import enhance_category
from .logging_utils import log_event
from .parser import assemble_transaction
from .schemas import CategoryProposal, RawMessage, Transaction, TransactionEdit
from .store import CategoryStore, InMemoryCategoryStore, TransactionNotFound, TransactionStore

DEFAULT_WORKERS = int(os.getenv("SMSLEDGER_WORKERS", "1"))

# One writer at a time across every ledger in the process.
MERGE_LOCK = threading.Lock()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sort_history(history: Iterable[Transaction]) -> List[Transaction]:
    # sorted() is stable with reverse=True, so same-date records keep their order.
    return sorted(history, key=lambda t: t.date, reverse=True)


def merge_transactions(new: Iterable[Transaction], existing: Sequence[Transaction]) -> List[Transaction]:
    """
    Append transactions whose source message is not yet in the history and
    return the result ordered newest first. Duplicates inside `new` are dropped
    too, so merging the same batch twice is a no-op.
    """
    merged = list(existing)
    seen = {t.source_message_id for t in merged}
    for txn in new:
        if txn.source_message_id in seen:
            continue
        seen.add(txn.source_message_id)
        merged.append(txn)
    return sort_history(merged)


class SmsLedger:
    def __init__(
        self,
        transactions: TransactionStore,
        categories: Optional[CategoryStore] = None,
        profiles: Sequence[BankProfile] = BANK_PROFILES,
        workers: int = DEFAULT_WORKERS,
        lock: threading.Lock = MERGE_LOCK,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.transactions = transactions
        self.categories = categories or InMemoryCategoryStore()
        self.profiles = tuple(profiles)
        self.workers = max(1, workers)
        self.lock = lock
        self.clock = clock

    def assemble(self, messages: Sequence[RawMessage]) -> List[Transaction]:
        now = self.clock()

        def one(msg: RawMessage) -> Optional[Transaction]:
            return assemble_transaction(msg, self.profiles, now)

        if self.workers > 1 and len(messages) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(one, messages))
        else:
            results = [one(m) for m in messages]
        return [t for t in results if t is not None]

    def process_messages(self, messages: Sequence[RawMessage]) -> List[Transaction]:
        """
        Parse a batch of raw SMS and merge the result into the stored history.
        Returns the transactions assembled from this batch; rejected messages
        are simply absent. Store errors propagate; the batch can be retried as a
        whole.
        """
        messages = list(messages)
        assembled = self.assemble(messages)

        with self.lock:
            existing = self.transactions.get_all()
            merged = merge_transactions(assembled, existing)
            self.transactions.save_batch(merged)

        log_event(
            'info',
            'sms.batch_processed',
            received=len(messages),
            assembled=len(assembled),
            rejected=len(messages) - len(assembled),
            inserted=len(merged) - len(existing),
            history_size=len(merged),
        )
        return assembled

    def history(self) -> List[Transaction]:
        return self.transactions.get_all()

    def get_transaction(self, txn_id: str) -> Transaction:
        txn = self.transactions.get(txn_id)
        if txn is None:
            raise TransactionNotFound(txn_id)
        return txn

    def edit_transaction(self, txn_id: str, edit: TransactionEdit) -> Transaction:
        # null in a partial edit means "leave as is"
        changes = edit.model_dump(exclude_unset=True, exclude_none=True)
        with self.lock:
            current = self.get_transaction(txn_id)
            updated = current.model_copy(update={**changes, "is_edited": True})
            updated = Transaction.model_validate(updated.model_dump())
            self.transactions.update_one(updated)
        log_event('info', 'ledger.transaction_edited', txn_id=txn_id, fields=sorted(changes))
        return updated

    def propose_category(self, txn_id: str) -> CategoryProposal:
        return enhance_category(self.get_transaction(txn_id), self.categories.get_all())

    def apply_enhancements(self) -> int:
        """
        Re-score every transaction the user has not corrected and store the
        proposals that changed the category. Returns the number updated.
        """
        categories = self.categories.get_all()
        updated = 0
        with self.lock:
            for txn in self.transactions.get_all():
                if txn.is_edited:
                    continue
                proposal = enhance_category(txn, categories)
                if proposal.category == txn.category:
                    continue
                self.transactions.update_one(
                    txn.model_copy(update={"category": proposal.category, "confidence": proposal.confidence})
                )
                updated += 1
        log_event('info', 'ledger.enhancements_applied', updated=updated)
        return updated


# ----------------- Summaries -----------------

def monthly_spending(history: Iterable[Transaction], year: int, month: int) -> Dict[str, Decimal]:
    spending: Dict[str, Decimal] = {}
    for t in history:
        if t.type != "debit" or t.date.year != year or t.date.month != month:
            continue
        spending[t.category] = spending.get(t.category, Decimal("0")) + t.amount
    return spending


def monthly_totals(history: Iterable[Transaction], year: int, month: int) -> Dict[str, Decimal]:
    """Income (credits) and expense (debits) for one calendar month."""
    totals = {"income": Decimal("0"), "expense": Decimal("0")}
    for t in history:
        if t.date.year != year or t.date.month != month:
            continue
        totals["income" if t.type == "credit" else "expense"] += t.amount
    return totals


def filter_transactions(
    history: Iterable[Transaction],
    tx_type: Optional[str] = None,
    is_upi: Optional[bool] = None,
) -> List[Transaction]:
    return [
        t for t in history
        if (tx_type is None or t.type == tx_type) and (is_upi is None or t.is_upi == is_upi)
    ]


def current_balance(history: Sequence[Transaction]) -> Optional[Decimal]:
    for t in sort_history(history):
        if t.balance is not None:
            return t.balance
    return None
