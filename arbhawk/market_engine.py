# arbhawk/market_engine.py
import ccxt.async_support as ccxt
import asyncio
import logging
import random
import time
from typing import Dict, List, Optional, Sequence

from .config import build_tokens, resolve_token
from .exceptions import SnapshotError
from .models import PairQuote, PairSpec, Snapshot


class SnapshotProvider:
    """
    Supplies one market snapshot per refresh tick.
    Implementations raise SnapshotError on failure, never library-specific exceptions.
    """
    async def initialize(self) -> bool:
        return True

    async def get_snapshot(self, pairs: Sequence[PairSpec]) -> Snapshot:
        raise NotImplementedError

    async def shutdown(self):
        pass


class SimulatedSnapshotProvider(SnapshotProvider):
    """
    Random market used for demos and testnet runs.
    Ratios and sizes follow the ranges the dashboard was tuned against.
    """
    def __init__(self, cfg: dict, rng: Optional[random.Random] = None, clock=time.time):
        self.tokens = build_tokens(cfg)
        self.venues = tuple(cfg['venues'])
        self.failure_probability = cfg['market_data'].get('failure_probability', 0.0)
        self.rng = rng or random.Random()
        self.clock = clock

    async def get_snapshot(self, pairs: Sequence[PairSpec]) -> Snapshot:
        if self.failure_probability and self.rng.random() < self.failure_probability:
            raise SnapshotError("Failed to fetch arbitrage data (simulated feed outage)")

        now = self.clock()
        quotes = []
        for pair in pairs:
            venues = list(self.venues)
            self.rng.shuffle(venues)
            quotes.append(PairQuote(
                pair=pair,
                venues=tuple(venues),
                entry_amount=50 + self.rng.random() * 950,
                direct_ratio=0.001 + self.rng.random() * 0.025,
                loop_ratio=0.001 + self.rng.random() * 0.03,
                # Quotes arrive spread over the last 30 seconds
                observed_at=now - self.rng.random() * 30,
            ))
        return Snapshot(
            taken_at=now,
            tokens=self.tokens,
            venues=self.venues,
            quotes=tuple(quotes),
            congestion=0.8 + self.rng.random() * 0.6,
            simulated=True,
        )


class CcxtSnapshotProvider(SnapshotProvider):
    """
    Public ticker data from centralized exchanges through ccxt.
    The direct ratio of a pair is the best cross-venue spread (best bid vs best ask).
    Triangular loops are not priced here.
    """
    def __init__(self, cfg: dict, logger: logging.Logger, clock=time.time):
        self.cfg = cfg
        self.logger = logger
        self.clock = clock
        self.tokens = build_tokens(cfg)
        self.exchanges: Dict[str, ccxt.Exchange] = {}

    async def initialize(self) -> bool:
        """
        Creates one public client per configured exchange and loads its markets.
        Returns False if no exchange could be reached.
        """
        timeout = self.cfg['market_data']['network_timeout_ms']
        self.logger.info("📡 TESTING EXCHANGE CONNECTIONS...")

        for name in self.cfg['market_data']['exchanges']:
            client = None
            try:
                ex_class = getattr(ccxt, name)
                client = ex_class({'timeout': timeout, 'enableRateLimit': True})
                await client.load_markets()
                self.exchanges[name] = client
                self.logger.info(f"   ✅ {name.upper():<10} | Markets: {len(client.markets)}")
            except AttributeError:
                self.logger.error(f"   ❌ {name.upper():<10} | UNKNOWN EXCHANGE: not supported by ccxt.")
            except ccxt.RequestTimeout:
                self.logger.error(f"   ❌ {name.upper():<10} | TIMEOUT: Exchange API is slow or down.")
                if client is not None:
                    await client.close()
            except ccxt.ExchangeNotAvailable:
                self.logger.error(f"   ❌ {name.upper():<10} | MAINTENANCE: Exchange is currently offline.")
                if client is not None:
                    await client.close()
            except ccxt.BaseError as e:
                self.logger.error(f"   ❌ {name.upper():<10} | ERROR: {e}")
                if client is not None:
                    await client.close()

        return bool(self.exchanges)

    async def _fetch(self, name: str, symbol: str):
        return name, symbol, await self.exchanges[name].fetch_ticker(symbol)

    async def get_snapshot(self, pairs: Sequence[PairSpec]) -> Snapshot:
        if not self.exchanges:
            raise SnapshotError("No exchange connections available")

        jobs = [
            self._fetch(name, pair.symbol)
            for pair in pairs
            for name, client in self.exchanges.items()
            if pair.symbol in client.markets
        ]
        results = await asyncio.gather(*jobs, return_exceptions=True)

        tickers: Dict[str, List[tuple]] = {}
        errors = []
        for res in results:
            if isinstance(res, ccxt.BaseError):
                errors.append(res)
                continue
            if isinstance(res, BaseException):
                raise res
            name, symbol, ticker = res
            if ticker.get('bid') and ticker.get('ask'):
                tickers.setdefault(symbol, []).append((name, ticker))

        if errors and not tickers:
            raise SnapshotError(f"All ticker requests failed: {errors[0]}")
        for err in errors:
            self.logger.warning(f"Ticker fetch failed: {err}")

        now = self.clock()
        quotes = []
        sizing = self.cfg['market_data']['sizing_amount']
        for pair in pairs:
            venue_ticks = tickers.get(pair.symbol, [])
            if not venue_ticks:
                continue
            buy_name, buy_tick = min(venue_ticks, key=lambda v: v[1]['ask'])
            sell_name, sell_tick = max(venue_ticks, key=lambda v: v[1]['bid'])
            ratio = (sell_tick['bid'] - buy_tick['ask']) / buy_tick['ask']
            others = [n for n, _ in venue_ticks if n not in (buy_name, sell_name)]
            venues = [buy_name] + ([sell_name] if sell_name != buy_name else []) + others
            observed = min(t.get('timestamp') or now * 1000 for _, t in venue_ticks) / 1000
            quotes.append(PairQuote(
                pair=pair,
                venues=tuple(venues),
                entry_amount=sizing,
                direct_ratio=ratio,
                loop_ratio=None,
                observed_at=observed,
            ))

        registry = self.cfg.get('tokens', {})
        tokens = {t.symbol: t for t in self.tokens}
        for pair in pairs:
            for sym in (pair.base, pair.quote):
                tokens.setdefault(sym, resolve_token(sym, registry))

        return Snapshot(
            taken_at=now,
            tokens=tuple(tokens.values()),
            venues=tuple(self.exchanges),
            quotes=tuple(quotes),
        )

    async def shutdown(self):
        """
        Gracefully closes all REST API sessions.
        """
        for ex in self.exchanges.values():
            await ex.close()
        self.exchanges.clear()


def create_provider(cfg: dict, logger: logging.Logger, rng: Optional[random.Random] = None) -> SnapshotProvider:
    if cfg['market_data']['provider'] == 'ccxt':
        return CcxtSnapshotProvider(cfg, logger)
    return SimulatedSnapshotProvider(cfg, rng=rng)
