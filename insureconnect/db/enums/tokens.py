"""Token ledger enums."""

from enum import Enum


class TokenTransactionType(str, Enum):
    """Ledger entry kinds. Debits carry negative amounts."""

    POST_CREATION = "POST_CREATION"
    REFUND = "REFUND"
    PURCHASE = "PURCHASE"
    FILE_UPLOAD = "FILE_UPLOAD"
    SIGNUP_BONUS = "SIGNUP_BONUS"


class TokenRequestStatus(str, Enum):
    """Purchase request lifecycle: pending -> approved | rejected."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
