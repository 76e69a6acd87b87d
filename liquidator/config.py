"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    rpc_endpoints: tuple[str, ...] = ()
    ws_endpoint: str = ""
    rpc_timeout: int = 30
    commitment: str = "confirmed"
    confirm_timeout: int = 60


@dataclass(frozen=True)
class SchedulerConfig:
    interval_seconds: float = 0.25


@dataclass(frozen=True)
class BotConfig:
    keypair_path: str = ""
    page_start: int = 0
    page_end: int = 1
    tick_seconds: float = 10.0
    cooldown_seconds: float = 20.0
    price_poll_seconds: float = 1.0
    max_liquidation_usd: float = 1000.0
    max_trade_slippage: float = 0.02
    clear_residual: bool = True
    settlement_delay_seconds: float = 15.0
    min_collateral_sell_usd: float = 10.0
    post_factor: float = 0.9


@dataclass(frozen=True)
class PoolConfig:
    pool_id: int
    token_id: str
    mint: str
    decimals: int
    ltv: float
    liquidation_discount: float = 0.0
    swap_token: str = ""

    @property
    def decimal_mult(self) -> int:
        return 10**self.decimals


@dataclass(frozen=True)
class SdkConfig:
    factory: str = ""


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class LoggingConfig:
    log_dir: str = ""


@dataclass(frozen=True)
class AppConfig:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    bot: BotConfig = field(default_factory=BotConfig)
    stable_token: str = "USDC"
    pools: tuple[PoolConfig, ...] = ()
    sdk: SdkConfig = field(default_factory=SdkConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def pool(self, pool_id: int) -> PoolConfig | None:
        for pool in self.pools:
            if pool.pool_id == pool_id:
                return pool
        return None

    def pool_by_token(self, token_id: str) -> PoolConfig | None:
        for pool in self.pools:
            if pool.token_id == token_id:
                return pool
        return None

    @property
    def pool_ids(self) -> list[int]:
        return [pool.pool_id for pool in self.pools]

    @property
    def stable_pool(self) -> PoolConfig:
        pool = self.pool_by_token(self.stable_token)
        if pool is None:
            raise ValueError(f"Stable token '{self.stable_token}' has no pool")
        return pool


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _default_ws_endpoint(rpc_endpoint: str) -> str:
    if rpc_endpoint.startswith("https://"):
        return "wss://" + rpc_endpoint[len("https://"):]
    if rpc_endpoint.startswith("http://"):
        return "ws://" + rpc_endpoint[len("http://"):]
    return rpc_endpoint


def _build_ledger(raw: dict[str, Any]) -> LedgerConfig:
    endpoints = tuple(raw.get("rpc_endpoints", []))
    ws_endpoint = raw.get("ws_endpoint") or (
        _default_ws_endpoint(endpoints[0]) if endpoints else ""
    )
    return LedgerConfig(
        rpc_endpoints=endpoints,
        ws_endpoint=ws_endpoint,
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        commitment=raw.get("commitment", "confirmed"),
        confirm_timeout=int(raw.get("confirm_timeout", 60)),
    )


def _build_scheduler(raw: dict[str, Any]) -> SchedulerConfig:
    return SchedulerConfig(interval_seconds=float(raw.get("interval_seconds", 0.25)))


def _build_bot(raw: dict[str, Any]) -> BotConfig:
    defaults = BotConfig()
    return BotConfig(
        keypair_path=raw.get("keypair_path", ""),
        page_start=int(raw.get("page_start", defaults.page_start)),
        page_end=int(raw.get("page_end", defaults.page_end)),
        tick_seconds=float(raw.get("tick_seconds", defaults.tick_seconds)),
        cooldown_seconds=float(raw.get("cooldown_seconds", defaults.cooldown_seconds)),
        price_poll_seconds=float(
            raw.get("price_poll_seconds", defaults.price_poll_seconds)
        ),
        max_liquidation_usd=float(
            raw.get("max_liquidation_usd", defaults.max_liquidation_usd)
        ),
        max_trade_slippage=float(
            raw.get("max_trade_slippage", defaults.max_trade_slippage)
        ),
        clear_residual=bool(raw.get("clear_residual", defaults.clear_residual)),
        settlement_delay_seconds=float(
            raw.get("settlement_delay_seconds", defaults.settlement_delay_seconds)
        ),
        min_collateral_sell_usd=float(
            raw.get("min_collateral_sell_usd", defaults.min_collateral_sell_usd)
        ),
        post_factor=float(raw.get("post_factor", defaults.post_factor)),
    )


def _build_pools(raw: list[dict[str, Any]]) -> tuple[PoolConfig, ...]:
    pools: list[PoolConfig] = []
    for p in raw:
        token_id = str(p.get("token_id", ""))
        pools.append(
            PoolConfig(
                pool_id=int(p.get("pool_id", -1)),
                token_id=token_id,
                mint=p.get("mint", ""),
                decimals=int(p.get("decimals", 0)),
                ltv=float(p.get("ltv", 0.0)),
                liquidation_discount=float(p.get("liquidation_discount", 0.0)),
                swap_token=p.get("swap_token") or token_id,
            )
        )
    return tuple(pools)


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            bot_token=tg.get("bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        ledger=_build_ledger(raw.get("ledger", {})),
        scheduler=_build_scheduler(raw.get("scheduler", {})),
        bot=_build_bot(raw.get("bot", {})),
        stable_token=raw.get("stable_token", "USDC"),
        pools=_build_pools(raw.get("pools", [])),
        sdk=SdkConfig(factory=raw.get("sdk", {}).get("factory", "")),
        notifications=_build_notifications(raw.get("notifications", {})),
        logging=LoggingConfig(log_dir=raw.get("logging", {}).get("log_dir", "")),
    )

    validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate(cfg: AppConfig) -> None:
    """Raise ``ValueError`` on invalid configuration."""
    if not cfg.ledger.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if cfg.scheduler.interval_seconds <= 0:
        raise ValueError("Scheduler interval must be positive")

    bot = cfg.bot
    if bot.page_start < 0 or bot.page_end <= bot.page_start:
        raise ValueError(
            f"Invalid page range [{bot.page_start}, {bot.page_end})"
        )
    if not 0 < bot.post_factor < 1:
        raise ValueError("post_factor must be between 0 and 1")
    if not 0 <= bot.max_trade_slippage < 1:
        raise ValueError("max_trade_slippage must be in [0, 1)")

    if not cfg.pools:
        raise ValueError("At least one pool must be configured")

    seen_ids: set[int] = set()
    seen_tokens: set[str] = set()
    for pool in cfg.pools:
        if pool.pool_id < 0:
            raise ValueError(f"Pool '{pool.token_id}' has no pool_id")
        if pool.pool_id in seen_ids:
            raise ValueError(f"Duplicate pool_id {pool.pool_id}")
        if pool.token_id in seen_tokens:
            raise ValueError(f"Duplicate token_id '{pool.token_id}'")
        seen_ids.add(pool.pool_id)
        seen_tokens.add(pool.token_id)

        try:
            Pubkey.from_string(pool.mint)
        except ValueError as e:
            raise ValueError(
                f"Pool '{pool.token_id}' has invalid mint '{pool.mint}'"
            ) from e
        if pool.decimals < 0:
            raise ValueError(f"Pool '{pool.token_id}' has negative decimals")
        if pool.ltv < 0 or pool.ltv * bot.post_factor >= 1:
            raise ValueError(
                f"Pool '{pool.token_id}' ltv {pool.ltv} must be in [0, 1/post_factor)"
            )
        if pool.liquidation_discount < 0:
            raise ValueError(f"Pool '{pool.token_id}' has negative liquidation_discount")

    if cfg.pool_by_token(cfg.stable_token) is None:
        raise ValueError(f"Stable token '{cfg.stable_token}' has no configured pool")
