import copy

import pytest
import yaml

from arbhawk.config import (
    DEFAULT_CONFIG, MAINNET, TESTNET, build_tokens, load_config, parse_pairs, resolve_token,
    validate_config, validate_endpoint,
)
from arbhawk.exceptions import ConfigError
from arbhawk.models import RiskConfig


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_defaults_are_valid():
    validate_config(copy.deepcopy(DEFAULT_CONFIG))
    assert RiskConfig.from_dict(DEFAULT_CONFIG['risk']) == RiskConfig()


def test_load_config_layers_over_defaults(tmp_path):
    path = _write(tmp_path, {
        'system': {'environment': MAINNET},
        'pairs': ['SOL/USDC'],
        'risk': {'min_profit_threshold': 2.5},
    })
    cfg = load_config(path)
    assert cfg['system']['environment'] == MAINNET
    assert cfg['system']['refresh_interval_seconds'] == DEFAULT_CONFIG['system']['refresh_interval_seconds']
    assert cfg['risk']['min_profit_threshold'] == 2.5
    assert cfg['risk']['max_trade_amount'] == DEFAULT_CONFIG['risk']['max_trade_amount']
    assert DEFAULT_CONFIG['system']['environment'] == TESTNET


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == DEFAULT_CONFIG


@pytest.mark.parametrize("override", [
    {'pairs': []},
    {'pairs': ['SOLUSDC']},
    {'system': {'environment': 'staging'}},
    {'system': {'refresh_interval_seconds': 0}},
    {'endpoints': {TESTNET: 'ftp://api.testnet.solana.com'}},
    {'fees': {'hop_fee_rate': 0.0, 'network_fee': 0.0}},
    {'fees': {'triangular_multiplier': 0.9}},
    {'generator': {'triangular_mix': 1.5}},
    {'execution': {'success_probability': -0.1}},
    {'risk': {'max_trade_amount': -10}},
    {'risk': {'unknown_setting': 1}},
    {'market_data': {'provider': 'carrier-pigeon'}},
    {'wallet': {'provider': 'hardware'}},
])
def test_invalid_configs_are_rejected(tmp_path, override):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, override))


def test_top_level_must_be_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


@pytest.mark.parametrize("identity", ["https://api.devnet.solana.com", "wss://stream.example.io/ws", " http://localhost:8899 "])
def test_validate_endpoint_accepts_urls(identity):
    assert validate_endpoint(identity) == identity.strip()


@pytest.mark.parametrize("identity", ["", "   ", "localhost", "https://", "file:///etc/passwd", None])
def test_validate_endpoint_rejects_garbage(identity):
    with pytest.raises(ConfigError):
        validate_endpoint(identity)


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_pairs({'pairs': []})


def test_token_registry_includes_pair_symbols():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg['pairs'] = ['SOL/USDC', 'JUP/USDC']
    tokens = {t.symbol: t for t in build_tokens(cfg)}
    assert tokens['SOL'].address == DEFAULT_CONFIG['tokens']['SOL']['address']
    assert tokens['JUP'].address == 'Unknown'
    assert resolve_token('XYZ', {}).name == 'XYZ'
