from .ledger import LedgerHandle, WorkLedger
from .build_context import BuildContext, ContextFieldAlreadySetError, ContextFieldUnsetError

__all__ = [
    "BuildContext",
    "ContextFieldAlreadySetError",
    "ContextFieldUnsetError",
    "LedgerHandle",
    "WorkLedger",
]
