"""
JSON-RPC connection handle for one EVM chain.

A ChainClient is bound to the chain id it was connected with. The target-chain
client also holds the relayer's signing key and is the only path through
which transactions leave the process.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp
import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.types import TxParams, TxReceipt

from .address import normalize_address
from .errors import ConfigError, GasError, NetworkError, TransactionError

logger = structlog.get_logger()

# Everything a JSON-RPC round trip can raise that is not a bug in our code
RPC_ERRORS = (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError)


def mask_url(url: str) -> str:
    """
    Mask credentials and path tokens in an RPC URL for logging.

    Hosted RPC providers commonly embed the API key as the last path segment
    (e.g. https://eth-sepolia.g.alchemy.com/v2/<key>).
    """
    parsed = urlparse(url)
    masked = url
    if parsed.password:
        masked = masked.replace(parsed.password, "***")
    segments = [s for s in parsed.path.split("/") if s]
    if segments and len(segments[-1]) >= 16:
        masked = masked.replace(segments[-1], "***")
    return masked


def apply_headroom(value: int, percent: int) -> int:
    """Increase a gas or fee value by a fixed percentage (integer math)."""
    return value * (100 + percent) // 100


class ChainClient:
    """
    Async client for one chain's RPC endpoint.

    Use ChainClient.connect() to get a client that has been checked against
    the expected chain id.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        chain_id: int,
        name: str = "chain",
        account: Optional[LocalAccount] = None,
        tx_timeout: float = 120.0,
        fee_bump_percent: int = 20,
    ):
        self.w3 = w3
        self.chain_id = chain_id
        self.name = name
        self.account = account
        self.tx_timeout = tx_timeout
        self.fee_bump_percent = fee_bump_percent

    @classmethod
    async def connect(
        cls,
        rpc_url: str,
        expected_chain_id: int,
        private_key: Optional[str] = None,
        name: str = "chain",
        timeout: float = 30.0,
        tx_timeout: float = 120.0,
        fee_bump_percent: int = 20,
    ) -> "ChainClient":
        """
        Connect to an RPC endpoint and verify its chain id.

        Raises:
            NetworkError: endpoint unreachable or reports a different chain id
            ConfigError: private key is malformed
        """
        account: Optional[LocalAccount] = None
        if private_key:
            try:
                account = Account.from_key(private_key)
            except (ValueError, TypeError) as e:
                raise ConfigError(f"Invalid private key for {name}: {e}") from e

        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
            )
        )

        try:
            chain_id = await w3.eth.chain_id
        except RPC_ERRORS as e:
            await w3.provider.disconnect()
            raise NetworkError(f"{name} RPC unreachable at {mask_url(rpc_url)}: {e}") from e

        if chain_id != expected_chain_id:
            await w3.provider.disconnect()
            raise NetworkError(
                f"{name} RPC at {mask_url(rpc_url)} reports chain id {chain_id}, "
                f"expected {expected_chain_id}"
            )

        logger.info(
            "chain_client_connected",
            chain=name,
            rpc_url=mask_url(rpc_url),
            chain_id=chain_id,
            signer=account.address if account else None,
        )

        return cls(
            w3,
            chain_id,
            name=name,
            account=account,
            tx_timeout=tx_timeout,
            fee_bump_percent=fee_bump_percent,
        )

    async def current_block_height(self) -> int:
        """Get the latest block number."""
        try:
            return await self.w3.eth.block_number
        except RPC_ERRORS as e:
            raise NetworkError(f"{self.name}: failed to read block height: {e}") from e

    def signer_address(self) -> str:
        """Get the signing account address."""
        if not self.account:
            raise ConfigError(f"{self.name}: no signing key configured")
        return self.account.address

    async def native_balance(self, address: str) -> Decimal:
        """Get an account's native balance in ether."""
        try:
            wei = await self.w3.eth.get_balance(normalize_address(address))
        except RPC_ERRORS as e:
            raise NetworkError(f"{self.name}: failed to read balance of {address}: {e}") from e
        return Web3.from_wei(wei, "ether")

    async def next_nonce(self) -> int:
        """Get next nonce for the signer, counting pending transactions."""
        try:
            return await self.w3.eth.get_transaction_count(self.signer_address(), "pending")
        except RPC_ERRORS as e:
            raise NetworkError(f"{self.name}: failed to read nonce: {e}") from e

    async def suggest_fees(self) -> dict[str, int]:
        """
        Suggest fee fields for the next transaction.

        Uses EIP-1559 fields when the chain reports a base fee, legacy gasPrice
        otherwise. The configured bump is applied on top of the node's
        suggestion. Never cached: fee markets move between sequential sends.
        """
        try:
            latest = await self.w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                gas_price = await self.w3.eth.gas_price
                return {"gasPrice": apply_headroom(gas_price, self.fee_bump_percent)}
            priority_fee = await self.w3.eth.max_priority_fee
        except RPC_ERRORS as e:
            raise GasError(f"{self.name}: fee suggestion failed: {e}") from e

        max_priority = apply_headroom(priority_fee, self.fee_bump_percent)
        max_fee = apply_headroom(2 * base_fee + priority_fee, self.fee_bump_percent)
        return {
            "maxFeePerGas": max(max_fee, max_priority),
            "maxPriorityFeePerGas": max_priority,
        }

    async def send_transaction(self, tx: TxParams) -> TxReceipt:
        """
        Sign, broadcast and wait for a transaction receipt.

        The caller supplies to/data/gas/fee fields; chain id and nonce are
        filled in here.

        Raises:
            NetworkError: broadcast or receipt polling failed
            TransactionError: reverted, or not mined within tx_timeout
        """
        account = self.account
        if not account:
            raise ConfigError(f"{self.name}: no signing key configured")

        tx = {**tx, "chainId": self.chain_id, "nonce": await self.next_nonce()}
        tx.pop("from", None)
        signed = account.sign_transaction(tx)

        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except RPC_ERRORS as e:
            raise NetworkError(f"{self.name}: broadcast failed: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info("tx_sent", chain=self.name, tx_hash=tx_hash_hex, nonce=tx["nonce"])

        try:
            receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.tx_timeout
            )
        except TimeExhausted as e:
            raise TransactionError(
                f"Transaction not mined within {self.tx_timeout:.0f}s", tx_hash=tx_hash_hex
            ) from e
        except RPC_ERRORS as e:
            raise NetworkError(f"{self.name}: receipt polling failed for {tx_hash_hex}: {e}") from e

        if receipt["status"] != 1:
            logger.error("tx_reverted", chain=self.name, tx_hash=tx_hash_hex)
            raise TransactionError("Transaction reverted", tx_hash=tx_hash_hex)

        logger.info(
            "tx_confirmed",
            chain=self.name,
            tx_hash=tx_hash_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        return receipt

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        """Get a contract instance bound to this client."""
        return self.w3.eth.contract(address=normalize_address(address), abi=abi)

    async def close(self) -> None:
        """Close the provider's HTTP session."""
        await self.w3.provider.disconnect()
