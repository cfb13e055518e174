"""Ledger capabilities consumed by the settlement workflow."""

from dataclasses import dataclass
from typing import Protocol

from solders.keypair import Keypair


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a submitted transfer. Unconfirmed means failed."""

    confirmed: bool
    signature: str | None = None


class BalanceOracle(Protocol):
    """Reads the spendable balance of an account."""

    async def get_balance(self, address: str) -> int | None:
        """Balance in lamports, or None if it could not be determined."""
        ...


class LedgerTransferService(Protocol):
    """Builds, signs, submits and confirms a native transfer."""

    async def transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        signer: Keypair,
    ) -> TransferResult:
        ...
