"""
Configuration Validation Module

Validates app.yaml and policy.yaml against Pydantic schemas, then runs
cross-field sanity checks. The bot refuses to start on any error.

Usage:
    from tools.config_validator import validate_all_configs

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


# ===== Policy Schema =====
class RiskSchema(BaseModel):
    """Risk parameters. Fractions are decimals, amounts in base currency."""
    initial_capital: float = Field(gt=0, description="Starting capital")
    max_position_size_pct: float = Field(default=0.10, gt=0, le=1, description="Fraction of capital per entry")
    max_open_positions: int = Field(default=3, gt=0, description="Max concurrently open positions")
    stop_loss_pct: float = Field(default=0.15, gt=0, lt=1, description="Stop distance below entry")
    take_profit_pct: float = Field(default=0.30, gt=0, description="Target distance above entry")
    portfolio_stop_loss: float = Field(default=0.34, gt=0, description="Absolute realized loss that halts entries")
    min_position_size: float = Field(default=0.001, ge=0, description="Dust threshold")
    size_precision: int = Field(default=4, ge=0, le=12, description="Decimal places for sizing")


class ExitsSchema(BaseModel):
    force_close_on_sell_failure: bool = True
    sell_failure_haircut_pct: float = Field(default=0.15, ge=0, lt=1)


class SafetySchema(BaseModel):
    base_url: Optional[str] = None
    max_risk_score: float = Field(default=500, ge=0, le=1000)
    cache_ttl_seconds: float = Field(default=600, ge=0)
    fail_open: bool = False
    critical_risks: List[str] = Field(default_factory=list)

    @field_validator("critical_risks")
    @classmethod
    def validate_critical_risks(cls, v: List[str]) -> List[str]:
        for name in v:
            if not str(name).strip():
                raise ValueError("critical risk names must be non-empty")
        return v


class ScannerSchema(BaseModel):
    chain_id: str = "solana"
    query: str = Field(default="SOL", min_length=1)
    min_liquidity_usd: float = Field(default=1_000_000, ge=0)
    min_age_hours: float = Field(default=24, ge=0)
    min_volume_4h_usd: float = Field(default=50_000, ge=0)
    min_volume_trend: float = Field(default=1.5, ge=0)
    token_refresh_seconds: float = Field(default=300, gt=0)


class DetectorSchema(BaseModel):
    birdeye_base_url: Optional[str] = None
    birdeye_api_key_env: Optional[str] = None
    lookback_hours: int = Field(default=48, gt=0)
    breakout_margin: float = Field(default=0.01, ge=0)
    fallback_breakout_pct: float = Field(default=5.0)
    min_volume_trend: float = Field(default=1.5, ge=0)
    min_sentiment: float = Field(default=50, ge=0, le=100)
    min_strength: float = Field(default=70, ge=0, le=100)


class SignalsSchema(BaseModel):
    max_tokens: int = Field(default=10, gt=0)
    scanner: ScannerSchema = Field(default_factory=ScannerSchema)
    detector: DetectorSchema = Field(default_factory=DetectorSchema)


class ExecutionSchema(BaseModel):
    slippage_bps: float = Field(default=100, ge=0, lt=10_000)
    fee_bps: float = Field(default=0, ge=0, lt=10_000)


class PolicySchema(BaseModel):
    """Complete policy configuration schema"""
    risk: RiskSchema
    exits: ExitsSchema = Field(default_factory=ExitsSchema)
    safety: SafetySchema = Field(default_factory=SafetySchema)
    signals: SignalsSchema = Field(default_factory=SignalsSchema)
    execution: ExecutionSchema = Field(default_factory=ExecutionSchema)


# ===== App Schema =====
class AppSection(BaseModel):
    name: str = "momentum-bot"
    mode: str = Field(default="PAPER", pattern="^(PAPER|paper)$", description="Execution mode")


class LoggingSchema(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v}")
        return v.upper()


class StateSchema(BaseModel):
    path: Optional[str] = None
    backup_dir: Optional[str] = None


class JournalSchema(BaseModel):
    path: Optional[str] = None


class LockSchema(BaseModel):
    name: str = Field(default="momentum-bot", min_length=1)
    dir: str = "data"


class LoopSchema(BaseModel):
    monitor_interval_seconds: float = Field(default=10, gt=0)
    signal_interval_seconds: float = Field(default=30, gt=0)
    heartbeat_interval_seconds: float = Field(default=300, gt=0)
    market_notes_interval_seconds: float = Field(default=600, gt=0)
    max_candidates_per_cycle: int = Field(default=3, gt=0)
    shutdown_timeout_seconds: float = Field(default=30, gt=0)


class EndpointSchema(BaseModel):
    base_url: Optional[str] = None
    api_key_env: Optional[str] = None
    cache_ttl_seconds: float = Field(default=300, ge=0)


class DataSourcesSchema(BaseModel):
    http_timeout_seconds: float = Field(default=8, gt=0)
    dexscreener: EndpointSchema = Field(default_factory=EndpointSchema)
    lunarcrush: EndpointSchema = Field(default_factory=EndpointSchema)


class AlertsSchema(BaseModel):
    enabled: bool = False
    webhook_url: Optional[str] = None
    webhook_env: Optional[str] = None
    chat_id: Optional[str] = None
    chat_id_env: Optional[str] = None
    min_severity: str = "info"
    dry_run: bool = False
    timeout_seconds: float = Field(default=5, gt=0)
    dedupe_seconds: float = Field(default=60, ge=0)

    @field_validator("min_severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v.lower() not in ("info", "success", "warning", "critical"):
            raise ValueError(f"unknown severity {v}")
        return v.lower()


class HealthcheckSchema(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8090, ge=0, le=65535)


class MetricsSchema(BaseModel):
    enabled: bool = False
    port: int = Field(default=9100, gt=0, le=65535)


class MonitoringSchema(BaseModel):
    alerts: AlertsSchema = Field(default_factory=AlertsSchema)
    healthcheck: HealthcheckSchema = Field(default_factory=HealthcheckSchema)
    metrics: MetricsSchema = Field(default_factory=MetricsSchema)

    @model_validator(mode="after")
    def validate_ports(self) -> "MonitoringSchema":
        if (
            self.healthcheck.enabled
            and self.metrics.enabled
            and self.healthcheck.port == self.metrics.port
        ):
            raise ValueError(f"healthcheck and metrics both bound to port {self.metrics.port}")
        return self


class AppSchema(BaseModel):
    """Complete app configuration schema"""
    app: AppSection = Field(default_factory=AppSection)
    logging: LoggingSchema = Field(default_factory=LoggingSchema)
    state: StateSchema = Field(default_factory=StateSchema)
    journal: JournalSchema = Field(default_factory=JournalSchema)
    lock: LockSchema = Field(default_factory=LockSchema)
    loop: LoopSchema = Field(default_factory=LoopSchema)
    data_sources: DataSourcesSchema = Field(default_factory=DataSourcesSchema)
    monitoring: MonitoringSchema = Field(default_factory=MonitoringSchema)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Message with line/column context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"
    problem = getattr(error, "problem", str(error))
    return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load a YAML mapping.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed or not a mapping
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"{file_path} must contain a mapping at top level")
    return data


def _validate_file(config_dir: Path, filename: str, schema) -> List[str]:
    errors = []
    try:
        schema(**load_yaml_file(config_dir / filename))
        logger.info(f"{filename} validation passed")
    except FileNotFoundError as e:
        errors.append(f"{filename}: {e}")
    except yaml.YAMLError as e:
        errors.append(f"{filename}: Invalid YAML - {e}")
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"]) or "(root)"
            errors.append(f"{filename}: {field}: {error['msg']}")
    return errors


def validate_policy(config_dir: Path) -> List[str]:
    return _validate_file(config_dir, "policy.yaml", PolicySchema)


def validate_app(config_dir: Path) -> List[str]:
    return _validate_file(config_dir, "app.yaml", AppSchema)


def validate_sanity_checks(config_dir: Path) -> List[str]:
    """
    Logical consistency checks that single-field constraints cannot express.

    Detects:
    - a first entry that would already be dust
    - a portfolio stop larger than the whole starting capital
    - position sizing that cannot fill max_open_positions
    """
    errors = []
    policy = PolicySchema(**load_yaml_file(config_dir / "policy.yaml"))
    risk = policy.risk

    first_size = round(risk.initial_capital * risk.max_position_size_pct, risk.size_precision)
    if first_size < risk.min_position_size:
        errors.append(
            f"UNSAFE: first position size {first_size} is below min_position_size "
            f"{risk.min_position_size}; the bot could never enter"
        )

    if risk.portfolio_stop_loss > risk.initial_capital:
        errors.append(
            f"UNSAFE: portfolio_stop_loss ({risk.portfolio_stop_loss}) exceeds initial_capital "
            f"({risk.initial_capital}); the halt can never trigger"
        )

    if risk.max_position_size_pct * risk.max_open_positions > 1:
        errors.append(
            f"CONTRADICTION: max_position_size_pct ({risk.max_position_size_pct}) x "
            f"max_open_positions ({risk.max_open_positions}) commits more than all capital"
        )

    if errors:
        logger.warning(f"{len(errors)} sanity check issue(s) found")
    return errors


def validate_all_configs(config_dir: str = "config") -> List[str]:
    """
    Validate all configuration files.

    Performs:
    1. Schema validation (Pydantic type checks)
    2. Sanity checks (logical consistency), only when the schemas pass

    Returns:
        List of all error messages (empty if all valid)
    """
    config_path = Path(config_dir)

    all_errors = []
    all_errors.extend(validate_app(config_path))
    all_errors.extend(validate_policy(config_path))

    if not all_errors:
        all_errors.extend(validate_sanity_checks(config_path))

    if not all_errors:
        logger.info("All config files validated successfully")
    else:
        logger.error(f"{len(all_errors)} validation error(s) found")

    return all_errors


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    errors = validate_all_configs(sys.argv[1] if len(sys.argv) > 1 else "config")
    if errors:
        print("\nConfiguration Validation Failed:\n")
        for error in errors:
            print(f"  - {error}")
        print()
        sys.exit(1)
    print("\nAll configuration files are valid!\n")
    sys.exit(0)
