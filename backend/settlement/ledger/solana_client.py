"""Async Solana RPC adapters: balance lookups and native SOL transfers."""

import asyncio
import logging

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from settlement.billing.exceptions import TransferBuildError
from settlement.config import settings
from settlement.ledger.ports import TransferResult

logger = logging.getLogger(__name__)


def get_solana_client() -> AsyncClient:
    """Create an AsyncClient for the configured RPC endpoint."""
    return AsyncClient(settings.solana_rpc_url, commitment=Confirmed)


def parse_address(address: str) -> Pubkey:
    """Parse a base58 account address, raising TransferBuildError if malformed."""
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise TransferBuildError(f"Invalid account address {address!r}") from e


def build_transfer_transaction(
    signer: Keypair,
    to_pubkey: Pubkey,
    lamports: int,
    recent_blockhash: Hash,
) -> VersionedTransaction:
    """Build and sign a v0 transaction holding a single system transfer."""
    if lamports <= 0:
        raise TransferBuildError(f"Transfer amount must be positive, got {lamports}")

    instruction = transfer(
        TransferParams(
            from_pubkey=signer.pubkey(),
            to_pubkey=to_pubkey,
            lamports=lamports,
        )
    )
    message = MessageV0.try_compile(
        payer=signer.pubkey(),
        instructions=[instruction],
        address_lookup_table_accounts=[],
        recent_blockhash=recent_blockhash,
    )
    return VersionedTransaction(message, [signer])


class SolanaBalanceOracle:
    """BalanceOracle backed by ``getBalance``."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    async def get_balance(self, address: str) -> int | None:
        try:
            pubkey = Pubkey.from_string(address)
        except ValueError:
            logger.warning("Cannot query balance of malformed address %r", address)
            return None

        try:
            response = await self._client.get_balance(pubkey, commitment=Confirmed)
        except (RPCException, httpx.HTTPError) as e:
            logger.warning("Balance query for %s failed: %s", address, e)
            return None
        return response.value


class SolanaTransferService:
    """LedgerTransferService that submits a native transfer and waits for confirmation.

    Confirmation is bounded by ``confirm_timeout`` seconds; a timeout or a
    lapsed blockhash is reported as ``confirmed=False``. Submission errors
    propagate to the caller.
    """

    def __init__(self, client: AsyncClient, confirm_timeout: float | None = None) -> None:
        self._client = client
        self._confirm_timeout = (
            confirm_timeout if confirm_timeout is not None else settings.ledger_confirm_timeout_seconds
        )

    async def transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        signer: Keypair,
    ) -> TransferResult:
        source = parse_address(from_address)
        destination = parse_address(to_address)
        if signer.pubkey() != source:
            raise TransferBuildError(f"Signer does not own account {from_address}")

        latest = (await self._client.get_latest_blockhash(commitment=Confirmed)).value
        transaction = build_transfer_transaction(signer, destination, amount, latest.blockhash)

        signature = (await self._client.send_transaction(transaction)).value
        logger.info(
            "Submitted transfer %s: %s -> %s (%d lamports)",
            signature,
            from_address,
            to_address,
            amount,
        )

        try:
            response = await asyncio.wait_for(
                self._client.confirm_transaction(
                    signature,
                    commitment=Confirmed,
                    last_valid_block_height=latest.last_valid_block_height,
                ),
                timeout=self._confirm_timeout,
            )
        except (asyncio.TimeoutError, UnconfirmedTxError) as e:
            logger.warning("Transfer %s not confirmed: %s", signature, str(e) or "timeout")
            return TransferResult(confirmed=False, signature=str(signature))

        status = response.value[0] if response.value else None
        if status is None or status.err is not None:
            logger.warning(
                "Transfer %s failed on chain: %s",
                signature,
                status.err if status else "no status",
            )
            return TransferResult(confirmed=False, signature=str(signature))

        logger.info("Transfer %s confirmed", signature)
        return TransferResult(confirmed=True, signature=str(signature))
