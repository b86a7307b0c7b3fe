from typing import Optional

from core.domain.entities import TransferStatus


class PendingTransferError(Exception):
    """
    Base error of the pending-transfer subsystem.

    Carries the transfer id and its last-known status so the caller can decide
    between retrying, re-syncing or showing a terminal message.
    """
    kind = "error"
    transfer_id: Optional[str]
    status: Optional[TransferStatus]

    def __init__(self, message: str, transfer_id: Optional[str] = None,
                 status: Optional[TransferStatus] = None) -> None:
        super().__init__(message)
        self.message = message
        self.transfer_id = transfer_id
        self.status = status


class ValidationError(PendingTransferError):
    kind = "validation_error"


class WalletNotConfiguredError(ValidationError):
    """
    The user has no wallet for the transfer's chain.
    """
    kind = "wallet_not_configured"


class NotFoundError(PendingTransferError):
    kind = "not_found"


class AlreadyFinalizedError(PendingTransferError):
    """
    The transfer has left `pending`; `status` holds the actual terminal state.
    """
    kind = "already_finalized"


class UnauthorizedError(PendingTransferError):
    kind = "unauthorized"


class AuthenticationError(PendingTransferError):
    """
    Missing or wrong API credentials. Distinct from UnauthorizedError, which
    is a user acting on a transfer that is not theirs.
    """
    kind = "auth_error"


class ExpiredError(PendingTransferError):
    kind = "expired"


class NotRegisteredError(PendingTransferError):
    """
    Record exists but on-chain registration never completed. Contact support.
    """
    kind = "not_registered"


class OnchainFailure(PendingTransferError):
    """
    Transient failure talking to the escrow contract. Safe to retry.
    """
    kind = "onchain_failure"


class StoreFailure(PendingTransferError):
    kind = "store_failure"


class DirectoryFailure(PendingTransferError):
    kind = "directory_failure"


class NotificationFailure(PendingTransferError):
    """
    Never propagated to the caller of a mutating operation.
    """
    kind = "notification_failure"


ERRORS_BY_KIND = {
    cls.kind: cls for cls in (
        ValidationError, WalletNotConfiguredError, NotFoundError, AlreadyFinalizedError, UnauthorizedError,
        ExpiredError, NotRegisteredError, OnchainFailure, StoreFailure, DirectoryFailure, NotificationFailure,
        AuthenticationError,
    )
}

HTTP_STATUS_BY_KIND = {
    ValidationError.kind: 400,
    WalletNotConfiguredError.kind: 400,
    AuthenticationError.kind: 401,
    UnauthorizedError.kind: 403,
    NotFoundError.kind: 404,
    AlreadyFinalizedError.kind: 409,
    NotRegisteredError.kind: 409,
    ExpiredError.kind: 410,
    OnchainFailure.kind: 502,
    NotificationFailure.kind: 502,
    StoreFailure.kind: 503,
    DirectoryFailure.kind: 503,
}
