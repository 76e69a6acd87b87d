"""Shared test fixtures and sample data."""
from __future__ import annotations

from pathlib import Path

import pytest

from liquidator.config import (
    AppConfig,
    BotConfig,
    LedgerConfig,
    PoolConfig,
    SchedulerConfig,
)
from liquidator.sync import MirrorContext, RateLimitedScheduler

from .fakes import (
    BTC,
    BTC_MINT,
    ETH,
    ETH_MINT,
    SOL,
    SOL_MINT,
    USDC,
    SAMPLE_YAML,
    USDC_MINT,
    FakeAddresses,
    FakeDecoder,
    FakeLedger,
)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pools() -> tuple[PoolConfig, ...]:
    return (
        PoolConfig(pool_id=BTC, token_id="BTC", mint=BTC_MINT, decimals=6, ltv=0.85,
                   liquidation_discount=0.04, swap_token="BTC"),
        PoolConfig(pool_id=ETH, token_id="ETH", mint=ETH_MINT, decimals=6, ltv=0.85,
                   liquidation_discount=0.04, swap_token="ETH"),
        PoolConfig(pool_id=USDC, token_id="USDC", mint=USDC_MINT, decimals=6, ltv=0.9,
                   liquidation_discount=0.02, swap_token="USDC"),
        PoolConfig(pool_id=SOL, token_id="SOL", mint=SOL_MINT, decimals=9, ltv=0.8,
                   liquidation_discount=0.05, swap_token="SOL"),
    )


@pytest.fixture()
def sample_app_config(sample_pools: tuple[PoolConfig, ...]) -> AppConfig:
    return AppConfig(
        ledger=LedgerConfig(
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            ws_endpoint="wss://rpc1.example.com",
            rpc_timeout=10,
        ),
        scheduler=SchedulerConfig(interval_seconds=0.001),
        bot=BotConfig(
            keypair_path="/tmp/liquidator.json",
            page_start=0,
            page_end=2,
            max_liquidation_usd=1000.0,
            max_trade_slippage=0.02,
        ),
        stable_token="USDC",
        pools=sample_pools,
    )


@pytest.fixture()
def sample_prices() -> dict[int, float]:
    return {BTC: 50000.0, ETH: 3000.0, USDC: 1.0, SOL: 100.0}


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def mirror_ctx(fake_ledger: FakeLedger) -> MirrorContext:
    return MirrorContext(
        ledger=fake_ledger,
        scheduler=RateLimitedScheduler(interval=0.001),
        decoder=FakeDecoder(),
        addresses=FakeAddresses(),
    )
