"""Shared fixtures: a paper ledger for the Base USDC -> WETH/VIRTUAL setup."""

import pytest
from prometheus_client import CollectorRegistry

from liquidity_agent.agent import build_agent
from liquidity_agent.config_loader import BASE_MAINNET_CONFIG, build_agent_config
from liquidity_agent.gateway.paper_gateway import PaperLedgerGateway

PAPER_SECTION = {
    "initial_balances": {"USDC": 1000},
    "prices": {"USDC": 1, "WETH": 3000, "VIRTUAL": 1.5},
    "liquidity_depth": 1000000,
    "fee_pct": 0.3,
    "stable_pools": False,
    "native_batching": True,
}


@pytest.fixture
def agent_config():
    """Default Base config with a paper section"""
    return build_agent_config({**BASE_MAINNET_CONFIG, "paper": dict(PAPER_SECTION)})


@pytest.fixture
def usdc(agent_config):
    return agent_config.base_asset


@pytest.fixture
def weth(agent_config):
    return agent_config.asset_a


@pytest.fixture
def virtual(agent_config):
    return agent_config.asset_b


@pytest.fixture
def gateway(agent_config):
    """Paper ledger with USDC/WETH, USDC/VIRTUAL and a gauged WETH/VIRTUAL pool"""
    return PaperLedgerGateway.from_config(agent_config)


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def agent(agent_config, gateway, registry):
    """Agent wired to the paper ledger; call orchestrator.initialize() in the test"""
    return build_agent(agent_config, gateway=gateway, registry=registry)


@pytest.fixture
def make_agent():
    """Factory for agents on a fresh paper ledger with execution/paper overrides"""

    def _make(execution=None, paper=None):
        data = {**BASE_MAINNET_CONFIG, "paper": {**PAPER_SECTION, **(paper or {})}}
        if execution:
            data["execution"] = execution
        config = build_agent_config(data)
        gateway = PaperLedgerGateway.from_config(config)
        return build_agent(config, gateway=gateway, registry=CollectorRegistry())

    return _make
