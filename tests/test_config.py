"""
Configuration schema and loader.

Verifies:
  - Minimal config fills defaults.
  - Invalid values fail fast (timezone, expiry, multiplier, unknown keys).
  - YAML rule source requires a rules file.
  - config.yaml + .env.local + OS env are merged with OS env winning.
"""

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from poscore.config import ConfigLoader, PosConfig, RuleSourceType, load_config

MINIMAL = {"terminal": {"branch_id": "BR-01", "device_id": "POS-01"}}


class TestSchema:

    def test_defaults(self):
        config = PosConfig.from_dict(MINIMAL)

        assert config.transactions.expiry_hours == 24
        assert config.transactions.max_items_warning == 100
        assert config.transactions.overpayment_warning_multiplier == Decimal("2")
        assert config.pricing.rule_source == RuleSourceType.STORE
        assert config.terminal.timezone == "UTC"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            PosConfig.from_dict({"terminal": {"branch_id": "BR-01", "device_id": "POS-01", "timezone": "Mars/Olympus"}})

    @pytest.mark.parametrize("hours", [0, 169])
    def test_expiry_bounds(self, hours):
        with pytest.raises(ValidationError):
            PosConfig.from_dict({**MINIMAL, "transactions": {"expiry_hours": hours}})

    def test_multiplier_must_exceed_one(self):
        with pytest.raises(ValidationError):
            PosConfig.from_dict({**MINIMAL, "transactions": {"overpayment_warning_multiplier": "1"}})

    def test_yaml_source_requires_file(self):
        with pytest.raises(ValidationError):
            PosConfig.from_dict({**MINIMAL, "pricing": {"rule_source": "yaml"}})

    def test_unknown_section_rejected(self):
        with pytest.raises(ValidationError):
            PosConfig.from_dict({**MINIMAL, "printer": {"port": "/dev/usb0"}})

    def test_yaml_round_trip(self, tmp_path):
        config = PosConfig.from_dict({**MINIMAL, "transactions": {"expiry_hours": 12}})
        path = tmp_path / "config.yaml"

        config.to_yaml(path)

        assert PosConfig.from_yaml(path) == config


class TestLoader:

    def _write(self, config_dir: Path, body: str) -> None:
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.yaml").write_text(body, encoding="utf-8")

    def test_load_and_validate(self, tmp_path):
        self._write(tmp_path, "terminal:\n  branch_id: BR-01\n  device_id: POS-01\n")

        config = load_config(tmp_path)

        assert config.terminal.device_id == "POS-01"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader(tmp_path).load()

    def test_invalid_config_wrapped(self, tmp_path):
        self._write(tmp_path, "terminal:\n  branch_id: BR-01\n")

        with pytest.raises(ValueError, match="Configuration validation failed"):
            ConfigLoader(tmp_path).load_and_validate()

    def test_env_override(self, tmp_path, monkeypatch):
        self._write(tmp_path, "terminal:\n  branch_id: BR-01\n  device_id: POS-01\n")
        monkeypatch.setenv("POS_EXPIRY_HOURS", "48")
        monkeypatch.setenv("POS_BRANCH_ID", "BR-09")

        config = load_config(tmp_path)

        assert config.transactions.expiry_hours == 48
        assert config.terminal.branch_id == "BR-09"

    def test_os_env_beats_env_file(self, tmp_path, monkeypatch):
        self._write(tmp_path, "terminal:\n  branch_id: BR-01\n  device_id: POS-01\n")
        (tmp_path / ".env.local").write_text("POS_DEVICE_ID=POS-FILE\n", encoding="utf-8")
        monkeypatch.setenv("POS_DEVICE_ID", "POS-OS")

        config = load_config(tmp_path)

        assert config.terminal.device_id == "POS-OS"
