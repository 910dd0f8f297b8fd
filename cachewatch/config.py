"""
cachewatch - Configuration
Settings for the probe scheduler, read from the environment (and .env)
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from .core import PROBE_NAMES, ConfigError


CACHE_CONTROL_PLACEMENTS = ("system", "user", "both")
LOG_FORMATS = ("text", "json")


@dataclass
class Thresholds:
    """Limits used to decide whether a model supports caching"""
    min_tests_with_caching: int = 3
    min_cache_hit_rate: float = 50.0
    min_success_rate: float = 60.0


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class MonitorConfig:
    """Central configuration for the scheduler, probes and API client"""
    api_key: str
    base_url: str = "https://api.venice.ai/api/v1"
    probes: Tuple[str, ...] = PROBE_NAMES
    max_tokens: int = 50
    cache_control_placement: str = "system"
    delay_between_requests: float = 3.0
    isolation_delay: float = 15.0
    inject_isolation_token: bool = True
    persistence_requests: int = 3
    ttl_delays: Tuple[float, ...] = (5.0, 30.0)
    thresholds: Thresholds = field(default_factory=Thresholds)
    max_retries: int = 3
    retry_delay: float = 2.0
    request_timeout: float = 30.0
    cooldown_duration: float = 7200.0
    max_consecutive_failures: int = 3
    failure_reset_threshold: int = 2
    failure_retention: float = 7 * 24 * 3600.0
    max_failure_records: int = 100
    min_balance: float = 0.001
    balance_recovery_interval: float = 300.0
    refresh_interval: float = 600.0
    failure_sweep_interval: float = 3600.0
    telemetry_report_interval: float = 900.0
    data_retention_days: int = 30
    store_timeout: float = 10.0
    selected_models: List[str] = field(default_factory=list)
    data_dir: Path = field(default_factory=lambda: Path("data"))
    logs_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    log_format: str = "text"
    debug_api_requests: bool = False
    balance_header: str = "x-venice-balance-diem"

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Reject settings that cannot work"""
        if not self.api_key:
            raise ConfigError("API key is empty")
        unknown = [p for p in self.probes if p not in PROBE_NAMES]
        if unknown:
            raise ConfigError(f"Unknown probes: {', '.join(unknown)} (known: {', '.join(PROBE_NAMES)})")
        if self.cache_control_placement not in CACHE_CONTROL_PLACEMENTS:
            raise ConfigError(f"CACHE_CONTROL_PLACEMENT must be one of {', '.join(CACHE_CONTROL_PLACEMENTS)}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")
        if self.max_retries < 1:
            raise ConfigError("MAX_RETRIES must be at least 1")
        if self.persistence_requests < 1:
            raise ConfigError("PERSISTENCE_REQUESTS must be at least 1")
        if not self.ttl_delays:
            raise ConfigError("TTL_DELAYS must list at least one delay")
        if self.max_consecutive_failures < 1 or self.failure_reset_threshold < 1:
            raise ConfigError("Failure thresholds must be at least 1")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'MonitorConfig':
        """Build the configuration from environment variables"""
        load_dotenv(env_file)
        api_key = os.getenv("CACHEWATCH_API_KEY") or os.getenv("VENICE_API_KEY")
        if not api_key:
            raise ConfigError("CACHEWATCH_API_KEY (or VENICE_API_KEY) not found in environment")

        ttl_delays = _get_list("TTL_DELAYS")
        try:
            ttl = tuple(float(d) for d in ttl_delays) if ttl_delays else (5.0, 30.0)
        except ValueError:
            raise ConfigError(f"TTL_DELAYS must be a comma separated list of seconds, got {os.getenv('TTL_DELAYS')!r}")

        return cls(
            api_key=api_key,
            base_url=os.getenv("CACHEWATCH_BASE_URL", "https://api.venice.ai/api/v1"),
            probes=tuple(_get_list("CACHEWATCH_PROBES")) or PROBE_NAMES,
            max_tokens=_get_int("MAX_TOKENS", 50),
            cache_control_placement=os.getenv("CACHE_CONTROL_PLACEMENT", "system").strip().lower(),
            delay_between_requests=_get_float("DELAY_BETWEEN_REQUESTS", 3.0),
            isolation_delay=_get_float("ISOLATION_DELAY", 15.0),
            inject_isolation_token=_get_bool("INJECT_ISOLATION_TOKEN", True),
            persistence_requests=_get_int("PERSISTENCE_REQUESTS", 3),
            ttl_delays=ttl,
            thresholds=Thresholds(
                min_tests_with_caching=_get_int("MIN_TESTS_WITH_CACHING", 3),
                min_cache_hit_rate=_get_float("MIN_CACHE_HIT_RATE", 50.0),
                min_success_rate=_get_float("MIN_SUCCESS_RATE", 60.0),
            ),
            max_retries=_get_int("MAX_RETRIES", 3),
            retry_delay=_get_float("RETRY_DELAY", 2.0),
            request_timeout=_get_float("REQUEST_TIMEOUT", 30.0),
            cooldown_duration=_get_float("COOLDOWN_DURATION", 7200.0),
            max_consecutive_failures=_get_int("MAX_CONSECUTIVE_FAILURES", 3),
            failure_reset_threshold=_get_int("FAILURE_RESET_THRESHOLD", 2),
            min_balance=_get_float("MIN_BALANCE", 0.001),
            balance_recovery_interval=_get_float("BALANCE_RECOVERY_INTERVAL", 300.0),
            refresh_interval=_get_float("REFRESH_INTERVAL", 600.0),
            data_retention_days=_get_int("DATA_RETENTION_DAYS", 30),
            selected_models=_get_list("SELECTED_MODELS"),
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            logs_dir=Path(os.getenv("LOGS_DIR", "logs")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "text").strip().lower(),
            debug_api_requests=_get_bool("DEBUG_API_REQUESTS", False),
            balance_header=os.getenv("BALANCE_HEADER", "x-venice-balance-diem").lower(),
        )

    def ensure_dirs(self):
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def get_api_url(self, endpoint: str) -> str:
        """Full URL for an API endpoint"""
        if endpoint:
            return f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        return self.base_url.rstrip('/')
