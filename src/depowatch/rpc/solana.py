"""JSON-RPC client for Solana."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from depowatch.chains import TokenConfig, to_decimal
from depowatch.rpc.base import RpcClient

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


@dataclass
class SignatureInfo:
    """One entry of getSignaturesForAddress."""

    signature: str
    slot: int
    block_time: Optional[int] = None
    failed: bool = False


@dataclass
class SolanaTransaction:
    """The parts of a confirmed transaction needed for balance diffing."""

    signature: str
    slot: int
    block_time: Optional[int]
    account_keys: list[str]
    pre_balances: list[int]
    post_balances: list[int]
    failed: bool = False

    def lamport_delta(self, address: str) -> Optional[int]:
        """Get post - pre lamports for an account, or None if not involved."""
        for i, key in enumerate(self.account_keys):
            if key == address:
                if i < len(self.pre_balances) and i < len(self.post_balances):
                    return self.post_balances[i] - self.pre_balances[i]
                return None
        return None

    def first_debited_account(self) -> Optional[str]:
        """Get the first account whose balance decreased."""
        for i, key in enumerate(self.account_keys):
            if i < len(self.pre_balances) and i < len(self.post_balances):
                if self.post_balances[i] < self.pre_balances[i]:
                    return key
        return None


@dataclass
class TokenHolding:
    """An SPL token account owned by an address."""

    mint: str
    raw_amount: int
    decimals: int

    @property
    def amount(self) -> Decimal:
        return to_decimal(self.raw_amount, self.decimals)


@dataclass
class SolanaBlock:
    slot: int
    block_time: Optional[int]
    signatures: list[str] = field(default_factory=list)


class SolanaRpcClient(RpcClient):
    """Solana JSON-RPC client (public RPC or Helius)."""

    async def get_current_height(self) -> int:
        result = await self.request("getSlot", [{"commitment": "confirmed"}])
        return int(result or 0)

    async def get_block(self, height: int, include_transactions: bool = True) -> Optional[SolanaBlock]:
        result = await self.request(
            "getBlock",
            [
                height,
                {
                    "encoding": "json",
                    "transactionDetails": "signatures" if include_transactions else "none",
                    "maxSupportedTransactionVersion": 0,
                    "rewards": False,
                },
            ],
        )
        if not result:
            return None
        return SolanaBlock(
            slot=height,
            block_time=result.get("blockTime"),
            signatures=list(result.get("signatures") or []),
        )

    async def get_native_balance(self, address: str) -> Decimal:
        result = await self.request("getBalance", [address])
        lamports = (result or {}).get("value", 0)
        return to_decimal(int(lamports), self.chain.native_decimals)

    async def get_token_balance(self, address: str, token: TokenConfig) -> Decimal:
        result = await self.request(
            "getTokenAccountsByOwner",
            [address, {"mint": token.address}, {"encoding": "jsonParsed"}],
        )
        total = 0
        for holding in self._parse_token_accounts(result):
            total += holding.raw_amount
        return to_decimal(total, token.decimals)

    async def get_token_accounts(self, owner: str) -> list[TokenHolding]:
        """Get every SPL token account held by an owner."""
        result = await self.request(
            "getTokenAccountsByOwner",
            [owner, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
        )
        return self._parse_token_accounts(result)

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        result = await self.request("getSignaturesForAddress", [address, {"limit": limit}])
        signatures = []
        for entry in result or []:
            signatures.append(
                SignatureInfo(
                    signature=entry["signature"],
                    slot=int(entry.get("slot", 0)),
                    block_time=entry.get("blockTime"),
                    failed=entry.get("err") is not None,
                )
            )
        return signatures

    async def get_transaction(self, signature: str) -> Optional[SolanaTransaction]:
        result = await self.request(
            "getTransaction",
            [
                signature,
                {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0},
            ],
        )
        if not result:
            return None

        meta = result.get("meta") or {}
        message = result.get("transaction", {}).get("message", {})
        account_keys = []
        for account in message.get("accountKeys", []):
            # jsonParsed returns {"pubkey": ..., "signer": ..., "writable": ...}
            account_keys.append(account.get("pubkey") if isinstance(account, dict) else account)

        return SolanaTransaction(
            signature=signature,
            slot=int(result.get("slot", 0)),
            block_time=result.get("blockTime"),
            account_keys=account_keys,
            pre_balances=list(meta.get("preBalances", [])),
            post_balances=list(meta.get("postBalances", [])),
            failed=meta.get("err") is not None,
        )

    @staticmethod
    def _parse_token_accounts(result: Optional[dict]) -> list[TokenHolding]:
        holdings = []
        for account in (result or {}).get("value", []):
            info = account.get("account", {}).get("data", {}).get("parsed", {}).get("info", {})
            token_amount = info.get("tokenAmount", {})
            mint = info.get("mint")
            if not mint:
                continue
            holdings.append(
                TokenHolding(
                    mint=mint,
                    raw_amount=int(token_amount.get("amount", "0")),
                    decimals=int(token_amount.get("decimals", 0)),
                )
            )
        return holdings
