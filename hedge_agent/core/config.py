"""
Hedge Configuration
===================
Sizing, timing and slippage parameters for the delta-neutral hedge engine,
plus database settings loaded from the environment.

Every min/max pair is an inclusive range. Durations are in milliseconds.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional


class ConfigError(ValueError):
    """Invalid or missing configuration"""


@dataclass(frozen=True)
class HedgeConfig:
    """Configuration for hedge cycle randomization"""

    # ===== SIZING =====

    # Notional per leg (USD), drawn uniformly each cycle
    min_size_usd: float = 100.0
    max_size_usd: float = 1000.0

    # ===== TIMING =====

    # Pause after a completed cycle before the next one opens
    min_sleep_between_orders_ms: float = 1000
    max_sleep_between_orders_ms: float = 5000

    # How long both legs stay open
    min_hold_time_ms: float = 30000
    max_hold_time_ms: float = 300000  # 5 minutes

    # ===== EXECUTION =====

    # Limit bound applied to IOC orders: buy at price*(1+s), sell at price*(1-s)
    slippage: float = 0.02

    def __post_init__(self):
        """Validate configuration"""
        errors = []
        if self.min_size_usd <= 0:
            errors.append("min_size_usd must be positive")
        for low, high in (
            ("min_size_usd", "max_size_usd"),
            ("min_sleep_between_orders_ms", "max_sleep_between_orders_ms"),
            ("min_hold_time_ms", "max_hold_time_ms"),
        ):
            if getattr(self, low) > getattr(self, high):
                errors.append(f"{low} must be <= {high}")
        if self.min_sleep_between_orders_ms < 0 or self.min_hold_time_ms < 0:
            errors.append("durations must not be negative")
        if not 0 <= self.slippage < 1:
            errors.append("slippage must be in [0, 1)")

        if errors:
            raise ValueError("Invalid hedge config:\n" + "\n".join(f"  - {e}" for e in errors))

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Any]] = None, **kwargs) -> 'HedgeConfig':
        """Merge a partial set of settings over the defaults"""
        merged = dict(overrides or {})
        merged.update(kwargs)
        known = {f.name for f in fields(cls)}
        unknown = set(merged) - known
        if unknown:
            raise ValueError(f"Unknown hedge config keys: {', '.join(sorted(unknown))}")
        return cls(**merged)

    def with_overrides(self, **kwargs) -> 'HedgeConfig':
        """Copy of this config with some settings replaced"""
        return replace(self, **kwargs)

    @classmethod
    def default(cls) -> 'HedgeConfig':
        return cls()

    @classmethod
    def lighter(cls) -> 'HedgeConfig':
        """
        Lighter preset - mid-size legs, short holds.
        """
        return cls(
            min_size_usd=100.0,
            max_size_usd=300.0,
            min_sleep_between_orders_ms=1000,
            max_sleep_between_orders_ms=5000,
            min_hold_time_ms=10000,
            max_hold_time_ms=20000,
            slippage=0.02,
        )

    @classmethod
    def paradex(cls) -> 'HedgeConfig':
        """
        Paradex preset - minimum-notional legs.
        """
        return cls(
            min_size_usd=11.0,
            max_size_usd=20.0,
            min_sleep_between_orders_ms=1000,
            max_sleep_between_orders_ms=5000,
            min_hold_time_ms=20000,
            max_hold_time_ms=40000,
            slippage=0.02,
        )


PRESETS = {
    "default": HedgeConfig.default,
    "lighter": HedgeConfig.lighter,
    "paradex": HedgeConfig.paradex,
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Trade history persistence settings"""

    enabled: bool = False
    database_url: Optional[str] = None

    @property
    def path(self) -> Optional[str]:
        """Filesystem path of the SQLite database"""
        if not self.database_url:
            return None
        url = self.database_url
        for prefix in ("sqlite:///", "sqlite://", "file:"):
            if url.startswith(prefix):
                return url[len(prefix):]
        return url

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'DatabaseConfig':
        """
        Read DB_ENABLED / DATABASE_URL.

        Raises:
            ConfigError: DB_ENABLED=true without DATABASE_URL
        """
        env = os.environ if environ is None else environ
        enabled = env.get("DB_ENABLED", "false").strip().lower() == "true"
        database_url = env.get("DATABASE_URL") or None

        if enabled and not database_url:
            raise ConfigError(
                "DATABASE_URL is required when DB_ENABLED=true. "
                "Please set DATABASE_URL in environment variables."
            )
        return cls(enabled=enabled, database_url=database_url)


# ===== Venue credentials =====

LIGHTER_ENV = (
    "LIGHTER_API_PRIVATE_KEY_{n}",
    "LIGHTER_ACCOUNT_INDEX_{n}",
    "LIGHTER_API_INDEX_{n}",
)
PARADEX_ENV = (
    "PARADEX_PRIVATE_KEY_{n}",
    "PARADEX_ACCOUNT_ADDRESS_{n}",
)
ACCOUNT_NUMBERS = (1, 2)


def _require(env: Mapping[str, str], templates, errors: list) -> None:
    for n in ACCOUNT_NUMBERS:
        for template in templates:
            name = template.format(n=n)
            if not env.get(name):
                errors.append(f"{name} is not set")


def _int_var(env: Mapping[str, str], name: str, errors: list) -> int:
    try:
        return int(env[name])
    except (KeyError, TypeError, ValueError):
        errors.append(f"{name} must be an integer")
        return 0


def lighter_accounts_from_env(environ: Optional[Mapping[str, str]] = None) -> list:
    """
    Credentials for the two Lighter accounts.

    Raises:
        ConfigError: listing every missing or invalid variable
    """
    env = os.environ if environ is None else environ
    errors: list = []
    _require(env, LIGHTER_ENV, errors)
    if errors:
        raise ConfigError("Missing Lighter configuration:\n" + "\n".join(f"  - {e}" for e in errors))

    accounts = []
    for n in ACCOUNT_NUMBERS:
        accounts.append({
            "private_key": env[f"LIGHTER_API_PRIVATE_KEY_{n}"],
            "account_index": _int_var(env, f"LIGHTER_ACCOUNT_INDEX_{n}", errors),
            "api_key_index": _int_var(env, f"LIGHTER_API_INDEX_{n}", errors),
            "base_url": env.get("LIGHTER_BASE_URL") or None,
        })
    if errors:
        raise ConfigError("Invalid Lighter configuration:\n" + "\n".join(f"  - {e}" for e in errors))
    return accounts


def paradex_accounts_from_env(environ: Optional[Mapping[str, str]] = None) -> list:
    """
    Credentials for the two Paradex subkeys.

    Raises:
        ConfigError: listing every missing variable
    """
    env = os.environ if environ is None else environ
    errors: list = []
    _require(env, PARADEX_ENV, errors)
    if errors:
        raise ConfigError("Missing Paradex configuration:\n" + "\n".join(f"  - {e}" for e in errors))

    return [
        {
            "l2_private_key": env[f"PARADEX_PRIVATE_KEY_{n}"],
            "l2_address": env[f"PARADEX_ACCOUNT_ADDRESS_{n}"],
            "env": env.get("PARADEX_ENV") or "prod",
        }
        for n in ACCOUNT_NUMBERS
    ]
