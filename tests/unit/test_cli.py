"""Unit tests for CLI argument parsing and wiring."""
from __future__ import annotations

import argparse
import json
from pathlib import Path

import pytest
from solders.keypair import Keypair

from liquidator.cli import _run, apply_overrides, build_coordinator, build_parser
from liquidator.config import AppConfig, load_config
from liquidator.services import ExecutionCoordinator

from ..fakes import SAMPLE_YAML


class TestBuildParser:
    def test_run_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["run"])
        assert args.command == "run"
        assert args.pages is None
        assert args.keypair is None

    def test_run_with_pages(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["run", "--pages", "4", "9"])
        assert args.pages == [4, 9]

    def test_check_config_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["check-config"])
        assert args.command == "check-config"

    def test_config_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "/tmp/c.yaml", "run"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--log-level", "DEBUG", "run"])
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args([])
        assert args.command is None


class TestApplyOverrides:
    def test_no_overrides_keeps_config(self, sample_app_config: AppConfig) -> None:
        args = argparse.Namespace(pages=None, keypair=None)
        assert apply_overrides(sample_app_config, args) is sample_app_config

    def test_pages_override(self, sample_app_config: AppConfig) -> None:
        args = argparse.Namespace(pages=[3, 7], keypair="/tmp/other.json")
        cfg = apply_overrides(sample_app_config, args)
        assert (cfg.bot.page_start, cfg.bot.page_end) == (3, 7)
        assert cfg.bot.keypair_path == "/tmp/other.json"

    def test_bad_pages_rejected(self, sample_app_config: AppConfig) -> None:
        args = argparse.Namespace(pages=[5, 2], keypair=None)
        with pytest.raises(ValueError, match="page range"):
            apply_overrides(sample_app_config, args)


class TestCommands:
    @pytest.mark.asyncio
    async def test_check_config_prints_pools(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        args = build_parser().parse_args(["--config", str(sample_yaml_path), "check-config"])
        await _run(args)
        out = capsys.readouterr().out
        assert "Stable token: USDC" in out
        assert "BTC" in out

    def test_build_coordinator(self, tmp_path: Path) -> None:
        key_path = tmp_path / "id.json"
        key_path.write_text(json.dumps(list(bytes(Keypair()))))
        cfg_path = tmp_path / "config.yaml"
        cfg_path.write_text(SAMPLE_YAML.replace("/tmp/key.json", str(key_path)))

        coordinator = build_coordinator(load_config(cfg_path))
        assert isinstance(coordinator, ExecutionCoordinator)
