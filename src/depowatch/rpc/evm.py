"""JSON-RPC client for the account chains (Ethereum, BSC)."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from depowatch.chains import TokenConfig, to_decimal
from depowatch.rpc.base import RpcClient

logger = logging.getLogger(__name__)

# ERC20 balanceOf(address) method signature
BALANCE_OF_SIGNATURE = "0x70a08231"


@dataclass
class EvmTransaction:
    """A transaction body from a full block."""

    hash: str
    from_address: str
    to_address: Optional[str]  # None for contract creation
    value_wei: int


@dataclass
class EvmBlock:
    """A block with its transaction bodies."""

    number: int
    timestamp: int
    transactions: list[EvmTransaction] = field(default_factory=list)


def _hex_to_int(value: Optional[str]) -> int:
    if not value:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


class EvmRpcClient(RpcClient):
    """Ethereum-style JSON-RPC client."""

    async def get_current_height(self) -> int:
        result = await self.request("eth_blockNumber")
        return _hex_to_int(result)

    async def get_block(self, height: int, include_transactions: bool = True) -> Optional[EvmBlock]:
        result = await self.request("eth_getBlockByNumber", [hex(height), include_transactions])
        if not result:
            return None

        transactions = []
        for tx in result.get("transactions", []):
            # Hash-only entries when bodies were not requested
            if not isinstance(tx, dict):
                continue
            to_address = tx.get("to")
            transactions.append(
                EvmTransaction(
                    hash=tx.get("hash", ""),
                    from_address=(tx.get("from") or "").lower(),
                    to_address=to_address.lower() if to_address else None,
                    value_wei=_hex_to_int(tx.get("value")),
                )
            )

        return EvmBlock(
            number=_hex_to_int(result.get("number")) or height,
            timestamp=_hex_to_int(result.get("timestamp")),
            transactions=transactions,
        )

    async def get_native_balance(self, address: str) -> Decimal:
        result = await self.request("eth_getBalance", [address, "latest"])
        return to_decimal(_hex_to_int(result), self.chain.native_decimals)

    async def get_token_balance(self, address: str, token: TokenConfig) -> Decimal:
        address_padded = address.lower().replace("0x", "").zfill(64)
        data = f"{BALANCE_OF_SIGNATURE}{address_padded}"

        result = await self.request("eth_call", [{"to": token.address, "data": data}, "latest"])
        if not result or result == "0x":
            return Decimal("0")
        return to_decimal(int(result, 16), token.decimals)
