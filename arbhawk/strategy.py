# arbhawk/strategy.py
import logging
import random
from typing import Dict, Iterable, List, Optional

from .models import PairQuote, Route, Snapshot, Token


class FeeModel:
    """
    Settlement cost of a route.

    Every hop pays a venue fee proportional to the entry amount plus a network
    fee scaled by congestion. Multi-hop routes settle through extra accounts and
    pay the triangular multiplier on top, so a loop always costs more than a
    direct swap of the same size.
    """
    def __init__(self, hop_fee_rate: float = 0.0005, network_fee: float = 0.0001,
                 triangular_multiplier: float = 1.5):
        self.hop_fee_rate = hop_fee_rate
        self.network_fee = network_fee
        self.triangular_multiplier = triangular_multiplier

    @classmethod
    def from_config(cls, cfg: dict) -> "FeeModel":
        fees = cfg['fees']
        return cls(fees['hop_fee_rate'], fees['network_fee'], fees['triangular_multiplier'])

    def _multiplier(self, hops: int) -> float:
        return self.triangular_multiplier if hops > 1 else 1.0

    def cost(self, hops: int, entry_amount: float, congestion: float = 1.0) -> float:
        per_hop = entry_amount * self.hop_fee_rate + self.network_fee * congestion
        return per_hop * hops * self._multiplier(hops)

    def network_cost(self, hops: int, congestion: float = 1.0) -> float:
        """Gas part of `cost`. Independent of trade size, this is what the fee budget caps."""
        return self.network_fee * congestion * hops * self._multiplier(hops)


class RouteMixPolicy:
    """Decides per monitored pair whether to build a direct or a triangular route."""
    def __init__(self, triangular_share: float = 0.5, rng: Optional[random.Random] = None):
        self.triangular_share = triangular_share
        self.rng = rng or random.Random()

    def wants_triangular(self, quote: PairQuote) -> bool:
        if quote.loop_ratio is None or self.triangular_share <= 0:
            return False
        if self.triangular_share >= 1:
            return True
        return self.rng.random() < self.triangular_share


def sort_by_net_profit(routes: Iterable[Route]) -> List[Route]:
    """
    Descending net profit, earliest generated_at first on ties.
    sorted() is stable, so remaining ties keep insertion order.
    """
    return sorted(routes, key=lambda r: (-r.net_profit, r.generated_at))


class OpportunityGenerator:
    """
    Turns a market snapshot into a ranked list of direct and triangular routes.
    Apart from the injected RNG it keeps no state between calls.
    """
    def __init__(self, fee_model: FeeModel, mix_policy: RouteMixPolicy,
                 rng: Optional[random.Random] = None, max_routes: int = 20, max_triangular: int = 15,
                 logger: Optional[logging.Logger] = None):
        self.fee_model = fee_model
        self.mix_policy = mix_policy
        self.rng = rng or random.Random()
        self.max_routes = max_routes
        self.max_triangular = max_triangular
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, cfg: dict, rng: Optional[random.Random] = None,
                    logger: Optional[logging.Logger] = None) -> "OpportunityGenerator":
        rng = rng or random.Random()
        gen = cfg['generator']
        return cls(
            FeeModel.from_config(cfg),
            RouteMixPolicy(gen['triangular_mix'], rng),
            rng=rng,
            max_routes=gen['max_routes'],
            max_triangular=gen['max_triangular'],
            logger=logger,
        )

    def generate(self, snapshot: Snapshot) -> List[Route]:
        tokens: Dict[str, Token] = {t.symbol: t for t in snapshot.tokens}
        if len(tokens) < 2:
            return []

        routes: List[Route] = []
        triangular_count = 0
        for quote in snapshot.quotes:
            if len(routes) >= self.max_routes:
                break
            base = tokens.get(quote.pair.base)
            counter = tokens.get(quote.pair.quote)
            if base is None or counter is None:
                self.logger.debug(f"Skipping {quote.pair.symbol}: token not in snapshot")
                continue

            route = None
            if triangular_count < self.max_triangular and self.mix_policy.wants_triangular(quote):
                route = self._triangular(quote, base, counter, tokens, snapshot)
                if route is not None:
                    triangular_count += 1
            if route is None:
                route = self._direct(quote, base, counter, snapshot)
            if route is not None:
                routes.append(route)

        return sort_by_net_profit(routes)

    def _direct(self, quote: PairQuote, base: Token, counter: Token, snapshot: Snapshot) -> Optional[Route]:
        venues = quote.venues or snapshot.venues
        if not venues:
            return None
        fee = self.fee_model.cost(1, quote.entry_amount, snapshot.congestion)
        gas = self.fee_model.network_cost(1, snapshot.congestion)
        return Route.build(
            path=(base, counter),
            venues=(venues[0],),
            entry_amount=quote.entry_amount,
            profit_ratio=quote.direct_ratio,
            fee_cost=fee,
            generated_at=quote.observed_at,
            network_cost=gas,
        )

    def _triangular(self, quote: PairQuote, start: Token, end: Token,
                    tokens: Dict[str, Token], snapshot: Snapshot) -> Optional[Route]:
        candidates = [t for t in tokens.values() if t != start and t != end]
        venue_pool = snapshot.venues or quote.venues
        if not candidates or not venue_pool:
            return None
        middle = self.rng.choice(candidates)
        hop_venues = tuple(self.rng.choice(venue_pool) for _ in range(3))
        fee = self.fee_model.cost(3, quote.entry_amount, snapshot.congestion)
        gas = self.fee_model.network_cost(3, snapshot.congestion)
        return Route.build(
            path=(start, middle, end, start),
            venues=hop_venues,
            entry_amount=quote.entry_amount,
            profit_ratio=quote.loop_ratio,
            fee_cost=fee,
            generated_at=quote.observed_at,
            network_cost=gas,
        )
