"""
Ledger Client

Async access to the chain holding the managed account: balance reads and
fee estimates. `Web3Ledger` talks to a JSON-RPC node through web3's async
provider; tests inject their own `LedgerClient`.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict
import aiohttp
from loguru import logger
from web3 import AsyncWeb3, Web3

from .errors import InvalidAddress


def to_checksum(address: str) -> str:
    """Validate and checksum an EVM address"""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(str(address))
    return Web3.to_checksum_address(address)


class LedgerClient(ABC):
    """Capability the balance monitor and simulator depend on"""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Balance in atomic units (wei)"""

    @abstractmethod
    async def estimate_fee(self, tx: Dict[str, Any]) -> int:
        """Fee estimate in atomic units for a transaction descriptor"""

    async def close(self):
        pass


class Web3Ledger(LedgerClient):
    """
    JSON-RPC ledger backed by AsyncWeb3

    The fee is `estimate_gas(tx) * gas_price`, so callers compare it directly
    with balances in wei.
    """

    def __init__(self, rpc_url: str, timeout: float = 10.0):
        """
        Initialize ledger

        Args:
            rpc_url: JSON-RPC endpoint
            timeout: HTTP request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                rpc_url,
                request_kwargs={'timeout': aiohttp.ClientTimeout(total=timeout)}
            )
        )
        logger.info(f"Ledger client configured for {rpc_url}")

    async def get_balance(self, address: str) -> int:
        balance = await self.w3.eth.get_balance(to_checksum(address))
        return int(balance)

    async def estimate_fee(self, tx: Dict[str, Any]) -> int:
        request = {k: v for k, v in tx.items() if v is not None}
        for key in ('from', 'to'):
            if key in request:
                request[key] = to_checksum(request[key])

        gas, gas_price = await asyncio.gather(
            self.w3.eth.estimate_gas(request),
            self.w3.eth.gas_price
        )
        logger.debug(f"Gas estimate: {gas} units at {gas_price} wei")
        return int(gas) * int(gas_price)

    async def close(self):
        provider = self.w3.provider
        disconnect = getattr(provider, 'disconnect', None)
        if disconnect is None:
            return
        try:
            await disconnect()
        except (RuntimeError, ConnectionError, OSError) as e:
            logger.debug(f"Ledger provider already closed: {e}")


class StaticLedger(LedgerClient):
    """Fixed balance and fee, for dry runs without a node"""

    def __init__(self, balance: int, fee: int = 21000 * 10**9):
        self.balance = balance
        self.fee = fee

    async def get_balance(self, address: str) -> int:
        return self.balance

    async def estimate_fee(self, tx: Dict[str, Any]) -> int:
        return self.fee
