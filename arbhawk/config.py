# arbhawk/config.py
import copy
from typing import Any, Dict, List, Tuple
from urllib.parse import urlparse

import yaml

from .exceptions import ConfigError
from .models import PairSpec, RiskConfig, Token

TESTNET = "testnet"
MAINNET = "mainnet"

DEFAULT_CONFIG: Dict[str, Any] = {
    'system': {
        'environment': TESTNET,
        'refresh_interval_seconds': 2.0,
        'snapshot_timeout_seconds': 10.0,
        'log_level': 'ERROR',
    },
    'endpoints': {
        TESTNET: 'https://api.testnet.solana.com',
        MAINNET: 'https://api.mainnet-beta.solana.com',
        'public_markers': ['api.mainnet-beta.solana.com'],
    },
    'pairs': ['SOL/USDC', 'BTC/USDC', 'ETH/USDC', 'SOL/BTC', 'RAY/USDC', 'MNGO/USDC', 'SRM/USDC'],
    'venues': ['Raydium', 'Orca', 'Jupiter', 'Saber', 'Serum'],
    'tokens': {
        'SOL': {'name': 'Solana', 'address': 'So11111111111111111111111111111111111111112'},
        'USDC': {'name': 'USD Coin', 'address': 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v'},
        'BTC': {'name': 'Wrapped Bitcoin', 'address': '9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E'},
        'ETH': {'name': 'Wrapped Ethereum', 'address': '2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk'},
        'RAY': {'name': 'Raydium', 'address': '4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R'},
        'SRM': {'name': 'Serum', 'address': 'SRMuApVNdxXokk5GT7XD5cUUgXMBCoAz2LHeuAoKWRt'},
        'MNGO': {'name': 'Mango', 'address': 'MangoCzJ36AjZyKwVj3VnYU4GTonjfVEnJmvvWaxLac'},
    },
    'risk': RiskConfig().to_dict(),
    'generator': {
        'triangular_mix': 0.5,
        'max_routes': 20,
        'max_triangular': 15,
    },
    'fees': {
        'hop_fee_rate': 0.0005,
        'network_fee': 0.0001,
        'triangular_multiplier': 1.5,
    },
    'execution': {
        'success_probability': 0.8,
        'settlement_delay_seconds': 2.0,
        'settlement_timeout_seconds': 10.0,
    },
    'auto_trade': {
        'cooldown_seconds': 10.0,
        'poll_interval_seconds': 1.0,
        'max_consecutive_failures': 5,
    },
    'diagnostics': {
        'stale_threshold_seconds': 60.0,
        'failure_rate_threshold': 0.3,
        'failure_window_seconds': 3600.0,
        'min_sample_size': 5,
        'suspect_profit_ratio': 0.05,
        'max_clock_skew_seconds': 5.0,
    },
    'market_data': {
        'provider': 'simulated',
        'exchanges': ['binance', 'kraken', 'okx'],
        'sizing_amount': 250.0,
        'network_timeout_ms': 10000,
        'failure_probability': 0.0,
    },
    'wallet': {
        'provider': 'simulated',
        'address': '',
    },
    'audit': {
        'trade_log': 'logs/trades.csv',
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: str = "config.yaml") -> Dict[str, Any]:
    """Reads a YAML config, layers it over DEFAULT_CONFIG and validates the result."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    cfg = _deep_merge(DEFAULT_CONFIG, raw)
    validate_config(cfg)
    return cfg


def validate_endpoint(identity: str) -> str:
    """Checks a data endpoint identity and returns it stripped."""
    if not isinstance(identity, str) or not identity.strip():
        raise ConfigError("Endpoint must be a non-empty URL")
    identity = identity.strip()
    parsed = urlparse(identity)
    if parsed.scheme not in ('http', 'https', 'ws', 'wss') or not parsed.netloc:
        raise ConfigError(f"Invalid endpoint {identity!r}: expected an http(s) or ws(s) URL")
    return identity


def _positive(cfg: Dict[str, Any], section: str, key: str, allow_zero: bool = False) -> None:
    value = cfg[section][key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{section}.{key} must be {'non-negative' if allow_zero else 'positive'}, got {value!r}")


def validate_config(cfg: Dict[str, Any]) -> None:
    env = cfg['system']['environment']
    if env not in (TESTNET, MAINNET):
        raise ConfigError(f"system.environment must be '{TESTNET}' or '{MAINNET}', got {env!r}")
    _positive(cfg, 'system', 'refresh_interval_seconds')
    _positive(cfg, 'system', 'snapshot_timeout_seconds')

    validate_endpoint(cfg['endpoints'][TESTNET])
    validate_endpoint(cfg['endpoints'][MAINNET])

    parse_pairs(cfg)
    if not cfg['venues']:
        raise ConfigError("At least one venue must be configured")

    RiskConfig.from_dict(cfg['risk'])

    mix = cfg['generator']['triangular_mix']
    if isinstance(mix, bool) or not isinstance(mix, (int, float)) or not 0.0 <= mix <= 1.0:
        raise ConfigError(f"generator.triangular_mix must be within [0, 1], got {mix!r}")
    _positive(cfg, 'generator', 'max_routes', allow_zero=True)
    _positive(cfg, 'generator', 'max_triangular', allow_zero=True)

    _positive(cfg, 'fees', 'hop_fee_rate', allow_zero=True)
    _positive(cfg, 'fees', 'network_fee', allow_zero=True)
    fees = cfg['fees']
    if fees['hop_fee_rate'] == 0 and fees['network_fee'] == 0:
        raise ConfigError("fees: hop_fee_rate and network_fee cannot both be zero")
    if fees['triangular_multiplier'] < 1.0:
        raise ConfigError("fees.triangular_multiplier must be at least 1.0")

    prob = cfg['execution']['success_probability']
    if isinstance(prob, bool) or not isinstance(prob, (int, float)) or not 0.0 <= prob <= 1.0:
        raise ConfigError(f"execution.success_probability must be within [0, 1], got {prob!r}")
    _positive(cfg, 'execution', 'settlement_delay_seconds', allow_zero=True)
    _positive(cfg, 'execution', 'settlement_timeout_seconds')

    _positive(cfg, 'auto_trade', 'cooldown_seconds', allow_zero=True)
    _positive(cfg, 'auto_trade', 'poll_interval_seconds')
    _positive(cfg, 'auto_trade', 'max_consecutive_failures')

    for key in ('stale_threshold_seconds', 'failure_window_seconds', 'suspect_profit_ratio'):
        _positive(cfg, 'diagnostics', key)
    _positive(cfg, 'diagnostics', 'failure_rate_threshold', allow_zero=True)
    _positive(cfg, 'diagnostics', 'min_sample_size', allow_zero=True)
    _positive(cfg, 'diagnostics', 'max_clock_skew_seconds', allow_zero=True)

    if cfg['market_data']['provider'] not in ('simulated', 'ccxt'):
        raise ConfigError(f"market_data.provider must be 'simulated' or 'ccxt', got {cfg['market_data']['provider']!r}")
    if cfg['wallet']['provider'] not in ('simulated', 'rpc'):
        raise ConfigError(f"wallet.provider must be 'simulated' or 'rpc', got {cfg['wallet']['provider']!r}")


def parse_pairs(cfg: Dict[str, Any]) -> List[PairSpec]:
    pairs = cfg.get('pairs') or []
    if not pairs:
        raise ConfigError("At least one pair must be monitored")
    return [PairSpec.parse(p) for p in pairs]


def build_tokens(cfg: Dict[str, Any]) -> Tuple[Token, ...]:
    """Token registry for the configured symbols plus any symbol a pair mentions."""
    registry = cfg.get('tokens', {})
    symbols = list(registry)
    for pair in parse_pairs(cfg):
        for sym in (pair.base, pair.quote):
            if sym not in symbols:
                symbols.append(sym)
    return tuple(resolve_token(sym, registry) for sym in symbols)


def resolve_token(symbol: str, registry: Dict[str, Dict[str, str]]) -> Token:
    meta = registry.get(symbol, {})
    return Token(name=meta.get('name', symbol), symbol=symbol, address=meta.get('address', 'Unknown'))


def default_endpoint(cfg: Dict[str, Any], environment: str) -> str:
    return cfg['endpoints'][environment]
