"""Exceptions raised by ledger adapters and the entitlement store.

None of these cross a payment entry point: the settlement workflow maps
each of them to a ``PaymentsMessage``.
"""


class SettlementError(Exception):
    """Base class for settlement failures."""


class CredentialError(SettlementError):
    """The stored signing credential could not be decrypted or parsed."""


class TransferBuildError(SettlementError):
    """A transfer could not be constructed (bad address, non-positive amount)."""


class EntitlementConflictError(SettlementError):
    """The entitlement row changed between read and write."""

    def __init__(self, user_id: str, platform: str) -> None:
        self.user_id = user_id
        self.platform = platform
        super().__init__(
            f"Concurrent entitlement write for user {user_id} on {platform}"
        )
