# arbhawk/wallet.py
import asyncio
import logging
import random
from typing import Optional

import aiohttp

from .models import WalletState

LAMPORTS_PER_SOL = 1_000_000_000


class WalletProvider:
    """
    The only thing the engine reads from a wallet is `state()`;
    execution checks `connected` before submitting anything.
    """
    def __init__(self):
        self.connected = False
        self.address = ""
        self.balance = 0.0

    def state(self) -> WalletState:
        return WalletState(connected=self.connected, address=self.address, balance=self.balance)

    async def connect(self) -> bool:
        raise NotImplementedError

    async def disconnect(self):
        self.connected = False
        self.address = ""
        self.balance = 0.0

    async def close(self):
        pass


class SimulatedWallet(WalletProvider):
    """Stand-in wallet for demos and tests."""
    def __init__(self, address: str = "", balance: Optional[float] = None, rng: Optional[random.Random] = None):
        super().__init__()
        self._address = address or "SimWa11et1111111111111111111111111111111111"
        self._balance = balance
        self.rng = rng or random.Random()

    async def connect(self) -> bool:
        self.address = self._address
        self.balance = self._balance if self._balance is not None else self.rng.random() * 10
        self.connected = True
        return True


class RpcWallet(WalletProvider):
    """
    Watch-only wallet: reads the SOL balance of a public address over JSON-RPC.
    Signing stays with the user's wallet application.
    """
    def __init__(self, endpoint: str, address: str, logger: logging.Logger, timeout: float = 10.0):
        super().__init__()
        self.endpoint = endpoint
        self._address = address
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_balance(self) -> float:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        payload = {"jsonrpc": "2.0", "id": 1, "method": "getBalance", "params": [self._address]}
        async with self._session.post(self.endpoint, json=payload) as resp:
            resp.raise_for_status()
            data = await resp.json()
        if 'error' in data:
            raise ValueError(data['error'].get('message', 'RPC error'))
        return data['result']['value'] / LAMPORTS_PER_SOL

    async def connect(self) -> bool:
        if not self._address:
            self.logger.error("Wallet connection failed: no wallet address configured")
            return False
        try:
            self.balance = await self._get_balance()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            self.logger.error(f"Wallet connection failed: {e}")
            self.connected = False
            return False
        self.address = self._address
        self.connected = True
        self.logger.info(f"Wallet connected: {self.address[:4]}...{self.address[-4:]} | {self.balance:.4f} SOL")
        return True

    async def disconnect(self):
        await super().disconnect()
        await self.close()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None


def create_wallet(cfg: dict, endpoint: str, logger: logging.Logger) -> WalletProvider:
    if cfg['wallet']['provider'] == 'rpc':
        return RpcWallet(endpoint, cfg['wallet']['address'], logger)
    return SimulatedWallet(cfg['wallet']['address'])
