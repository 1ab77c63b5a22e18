"""Transaction classification shared by every report view.

One canonical transfer policy is applied everywhere:

* owner-set views (overview, account-based metrics) use ``classify``: a
  transfer between two owned accounts is internal and never touches
  earned/spent;
* account-type views (flow aggregator, period roll-forward) use
  ``transfer_buckets``: a transfer moves money from the source account's type
  bucket to the destination's, and is a no-op when both accounts share a type.
"""

from collections.abc import Collection, Mapping
from enum import Enum
from typing import Optional

from models import Account, AccountType, Transaction, TransactionType

_TYPE_ALIASES = {
    "investment": AccountType.investments.value,
    "investments": AccountType.investments.value,
}


class ReportContractError(ValueError):
    """A calculator was called in a way its contract does not allow."""


class TransactionClass(str, Enum):
    income = "income"
    expense = "expense"
    internal_transfer = "internal_transfer"
    external_transfer_in = "external_transfer_in"
    external_transfer_out = "external_transfer_out"

    @property
    def is_earned(self) -> bool:
        return self in (TransactionClass.income, TransactionClass.external_transfer_in)

    @property
    def is_spent(self) -> bool:
        return self in (TransactionClass.expense, TransactionClass.external_transfer_out)


def classify(
    txn: Transaction, owned_account_ids: Collection[str]
) -> Optional[TransactionClass]:
    """Return the class of ``txn`` relative to ``owned_account_ids``.

    ``None`` means the transaction does not touch the owner set.
    """
    from_owned = txn.account_id in owned_account_ids
    if txn.type == TransactionType.income:
        return TransactionClass.income if from_owned else None
    if txn.type == TransactionType.expense:
        return TransactionClass.expense if from_owned else None
    if txn.type == TransactionType.transfer:
        to_owned = txn.to_account_id is not None and txn.to_account_id in owned_account_ids
        if from_owned and to_owned:
            return TransactionClass.internal_transfer
        if from_owned:
            return TransactionClass.external_transfer_out
        if to_owned:
            return TransactionClass.external_transfer_in
    return None


def normalize_account_type(raw: Optional[str]) -> str:
    if raw is None:
        return AccountType.other.value
    value = raw.value if isinstance(raw, Enum) else str(raw)
    lower = value.strip().lower()
    if not lower:
        return AccountType.other.value
    return _TYPE_ALIASES.get(lower, lower)


def transfer_buckets(
    txn: Transaction, accounts_by_id: Mapping[str, Account]
) -> Optional[tuple[str, Optional[str]]]:
    """Source and destination type buckets of a transfer.

    Returns ``None`` when the transfer does not move money between buckets:
    unknown source account, or source and destination of the same type. A
    destination that cannot be resolved yields ``(source_type, None)``; the
    amount leaves the source bucket and lands nowhere.
    """
    source = accounts_by_id.get(txn.account_id)
    if source is None:
        return None
    source_type = normalize_account_type(source.type)
    destination = accounts_by_id.get(txn.to_account_id) if txn.to_account_id else None
    destination_type = (
        normalize_account_type(destination.type) if destination is not None else None
    )
    if destination_type == source_type:
        return None
    return source_type, destination_type
