"""Tests for config schema validation and sanity checks."""

import shutil
from pathlib import Path

import pytest
import yaml

from tools.config_validator import validate_all_configs

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


@pytest.fixture
def config_dir(tmp_path):
    target = tmp_path / "config"
    shutil.copytree(REPO_CONFIG, target)
    return target


def _edit(config_dir: Path, filename: str, mutate) -> None:
    path = config_dir / filename
    data = yaml.safe_load(path.read_text())
    mutate(data)
    path.write_text(yaml.safe_dump(data))


def test_shipped_config_is_valid():
    assert validate_all_configs(str(REPO_CONFIG)) == []


def test_missing_policy_file(config_dir):
    (config_dir / "policy.yaml").unlink()
    errors = validate_all_configs(str(config_dir))
    assert any("policy.yaml" in e and "not found" in e for e in errors)


def test_malformed_yaml_reports_location(config_dir):
    (config_dir / "app.yaml").write_text("loop:\n  monitor_interval_seconds: [10\n")
    errors = validate_all_configs(str(config_dir))
    assert any("app.yaml" in e and "Invalid YAML" in e for e in errors)


def test_missing_risk_block(config_dir):
    _edit(config_dir, "policy.yaml", lambda d: d.pop("risk"))
    errors = validate_all_configs(str(config_dir))
    assert any(e.startswith("policy.yaml: risk") for e in errors)


@pytest.mark.parametrize("key, value", [
    ("stop_loss_pct", 1.5),
    ("max_open_positions", 0),
    ("max_position_size_pct", -0.1),
])
def test_out_of_range_risk_values(config_dir, key, value):
    _edit(config_dir, "policy.yaml", lambda d: d["risk"].__setitem__(key, value))
    errors = validate_all_configs(str(config_dir))
    assert any(f"risk -> {key}" in e for e in errors)


def test_zero_interval_rejected(config_dir):
    _edit(config_dir, "app.yaml", lambda d: d["loop"].__setitem__("monitor_interval_seconds", 0))
    errors = validate_all_configs(str(config_dir))
    assert any("loop -> monitor_interval_seconds" in e for e in errors)


def test_live_mode_rejected(config_dir):
    _edit(config_dir, "app.yaml", lambda d: d["app"].__setitem__("mode", "LIVE"))
    errors = validate_all_configs(str(config_dir))
    assert any("app -> mode" in e for e in errors)


def test_sanity_dust_first_entry(config_dir):
    _edit(config_dir, "policy.yaml", lambda d: d["risk"].__setitem__("initial_capital", 0.005))
    errors = validate_all_configs(str(config_dir))
    assert any("min_position_size" in e for e in errors)


def test_sanity_portfolio_stop_above_capital(config_dir):
    _edit(config_dir, "policy.yaml", lambda d: d["risk"].__setitem__("portfolio_stop_loss", 5.0))
    errors = validate_all_configs(str(config_dir))
    assert any("halt can never trigger" in e for e in errors)


def test_port_collision(config_dir):
    def mutate(d):
        d["monitoring"]["healthcheck"].update({"enabled": True, "port": 9100})
        d["monitoring"]["metrics"].update({"enabled": True, "port": 9100})

    _edit(config_dir, "app.yaml", mutate)
    errors = validate_all_configs(str(config_dir))
    assert any("port 9100" in e for e in errors)
