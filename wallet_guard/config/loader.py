"""
Configuration management and loading.

Handles billing settings from YAML and secrets from environment variables.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_ACTION_LIMITS = {"chat_confirm": 12}

PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


@dataclass(frozen=True)
class WalletConfig:
    """Wallet currency and the fee applied on every debit."""
    currency: str = "INR"
    fee_rate: Decimal = Decimal("0.02")

    def __post_init__(self):
        """Validate fee and currency."""
        if not self.currency or not self.currency.strip():
            raise ValueError("currency must be a non-empty string")
        if not Decimal(self.fee_rate).is_finite():
            raise ValueError("fee_rate must be a finite number")
        if self.fee_rate < 0:
            raise ValueError("fee_rate must be >= 0")


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-action request limits inside one-minute windows."""
    retry_after_seconds: int = 15
    actions: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_ACTION_LIMITS))

    def __post_init__(self):
        """Validate limits are positive."""
        if self.retry_after_seconds <= 0:
            raise ValueError("retry_after_seconds must be > 0")
        for action, limit in self.actions.items():
            if limit <= 0:
                raise ValueError(f"limit for action '{action}' must be > 0")
        missing = set(DEFAULT_ACTION_LIMITS) - set(self.actions)
        if missing:
            raise ValueError(f"rate_limit.actions is missing required actions: {sorted(missing)}")

    def limit_for(self, action: str) -> int:
        """Get the limit for an action, raising if it is not configured."""
        if action not in self.actions:
            raise ValueError(f"No rate limit configured for action: {action}")
        return self.actions[action]


@dataclass(frozen=True)
class IdempotencyConfig:
    """Width of the time bucket used in idempotency keys."""
    bucket_seconds: int = 60

    def __post_init__(self):
        if self.bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be > 0")


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker thresholds shared by every guarded dependency."""
    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0
    failure_window_seconds: float = 60.0

    def __post_init__(self):
        """Validate breaker values."""
        if self.failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if self.reset_timeout_seconds <= 0:
            raise ValueError("reset_timeout_seconds must be > 0")
        if self.failure_window_seconds <= 0:
            raise ValueError("failure_window_seconds must be > 0")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Upstream call budget."""
    timeout_seconds: float = 15.0
    max_retries: int = 1
    retry_delay_seconds: float = 0.25

    def __post_init__(self):
        """Validate timeout and retry values."""
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "wallet_guard.db"


@dataclass(frozen=True)
class AuthConfig:
    """Bearer token verification settings."""
    jwt_secret_env: str = "WALLET_GUARD_JWT_SECRET"
    jwt_algorithm: str = "HS256"

    def jwt_secret(self) -> Optional[str]:
        """Read the signing secret from the environment."""
        secret = os.environ.get(self.jwt_secret_env, "").strip()
        return secret or None


@dataclass(frozen=True)
class BillingConfig:
    """Complete billing configuration."""
    wallet: WalletConfig = field(default_factory=WalletConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


def provider_api_key(provider: str) -> Optional[str]:
    """Return the API key configured for a provider, or None if absent."""
    env_name = PROVIDER_KEY_ENV.get(provider)
    if env_name is None:
        return None
    value = os.environ.get(env_name, "").strip()
    return value or None


def load_billing_config(path: str) -> BillingConfig:
    """Load and validate billing configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to mispriced debits or disabled protections.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated BillingConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Billing config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return BillingConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {
        'wallet', 'rate_limit', 'idempotency', 'breaker',
        'orchestrator', 'storage', 'auth',
    }
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    wallet_data = _section(raw_config, 'wallet', {'currency', 'fee_rate'})
    wallet = WalletConfig(
        currency=str(wallet_data.get('currency', WalletConfig.currency)),
        fee_rate=_decimal(wallet_data.get('fee_rate', WalletConfig.fee_rate), 'wallet.fee_rate'),
    )

    rate_data = _section(raw_config, 'rate_limit', {'retry_after_seconds', 'actions'})
    actions = rate_data.get('actions', DEFAULT_ACTION_LIMITS)
    if not isinstance(actions, dict):
        raise ValueError("'rate_limit.actions' must be a dictionary")
    rate_limit = RateLimitConfig(
        retry_after_seconds=_int(
            rate_data.get('retry_after_seconds', RateLimitConfig.retry_after_seconds),
            'rate_limit.retry_after_seconds',
        ),
        # Required actions keep their default limit unless overridden
        actions={
            **DEFAULT_ACTION_LIMITS,
            **{
                str(name): _int(limit, f"rate_limit.actions.{name}")
                for name, limit in actions.items()
            },
        },
    )

    idem_data = _section(raw_config, 'idempotency', {'bucket_seconds'})
    idempotency = IdempotencyConfig(
        bucket_seconds=_int(
            idem_data.get('bucket_seconds', IdempotencyConfig.bucket_seconds),
            'idempotency.bucket_seconds',
        )
    )

    breaker_data = _section(
        raw_config, 'breaker',
        {'failure_threshold', 'reset_timeout_seconds', 'failure_window_seconds'},
    )
    breaker = BreakerConfig(
        failure_threshold=_int(
            breaker_data.get('failure_threshold', BreakerConfig.failure_threshold),
            'breaker.failure_threshold',
        ),
        reset_timeout_seconds=_float(
            breaker_data.get('reset_timeout_seconds', BreakerConfig.reset_timeout_seconds),
            'breaker.reset_timeout_seconds',
        ),
        failure_window_seconds=_float(
            breaker_data.get('failure_window_seconds', BreakerConfig.failure_window_seconds),
            'breaker.failure_window_seconds',
        ),
    )

    orch_data = _section(
        raw_config, 'orchestrator',
        {'timeout_seconds', 'max_retries', 'retry_delay_seconds'},
    )
    orchestrator = OrchestratorConfig(
        timeout_seconds=_float(
            orch_data.get('timeout_seconds', OrchestratorConfig.timeout_seconds),
            'orchestrator.timeout_seconds',
        ),
        max_retries=_int(
            orch_data.get('max_retries', OrchestratorConfig.max_retries),
            'orchestrator.max_retries',
        ),
        retry_delay_seconds=_float(
            orch_data.get('retry_delay_seconds', OrchestratorConfig.retry_delay_seconds),
            'orchestrator.retry_delay_seconds',
        ),
    )

    storage_data = _section(raw_config, 'storage', {'db_path'})
    storage = StorageConfig(db_path=str(storage_data.get('db_path', StorageConfig.db_path)))

    auth_data = _section(raw_config, 'auth', {'jwt_secret_env', 'jwt_algorithm'})
    auth = AuthConfig(
        jwt_secret_env=str(auth_data.get('jwt_secret_env', AuthConfig.jwt_secret_env)),
        jwt_algorithm=str(auth_data.get('jwt_algorithm', AuthConfig.jwt_algorithm)),
    )

    return BillingConfig(
        wallet=wallet,
        rate_limit=rate_limit,
        idempotency=idempotency,
        breaker=breaker,
        orchestrator=orchestrator,
        storage=storage,
        auth=auth,
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Fetch an optional section and reject unknown keys in it.

    Args:
        raw_config: Parsed YAML document
        name: Section name
        allowed_keys: Keys permitted inside the section

    Returns:
        Section contents (empty dict when the section is absent)

    Raises:
        ValueError: If section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _int(value: Any, path: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _float(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")
    if not result.is_finite():
        raise ValueError(f"'{path}' must be a finite number")
    return result
