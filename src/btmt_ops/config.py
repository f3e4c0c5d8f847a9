"""Configuration system for the BTMT operations toolkit.

Selects the environment profile from ``NODE_ENV``, loads the matching
``.env_<suffix>`` file, and builds validated settings and deployment
parameters.  Optional YAML override files support environment variable
expansion.
"""

from __future__ import annotations

import os
import re
import time
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    Unset variables are left as-is so that validation can catch them later.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Environment profile
# ---------------------------------------------------------------------------


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"

    @classmethod
    def from_node_env(cls, value: str | None) -> Environment:
        """Map a ``NODE_ENV`` value to a profile.

        Anything other than ``development`` or ``testing`` is production.
        """
        if value == cls.DEVELOPMENT.value:
            return cls.DEVELOPMENT
        if value == cls.TESTING.value:
            return cls.TESTING
        return cls.PRODUCTION

    @property
    def suffix(self) -> str:
        return {
            Environment.DEVELOPMENT: "dev",
            Environment.TESTING: "test",
            Environment.PRODUCTION: "prod",
        }[self]

    @property
    def is_production(self) -> bool:
        return self is Environment.PRODUCTION


def env_file_path(environment: Environment, base: Path | None = None) -> Path:
    """Return the ``.env_<suffix>`` path for *environment*."""
    if base is None:
        base = Path.cwd()
    return base / f".env_{environment.suffix}"


def load_env_file(environment: Environment, base: Path | None = None) -> bool:
    """Load the profile's dotenv file if it exists.

    Variables already set in the process environment are not overridden.
    Returns *True* if a file was loaded.
    """
    path = env_file_path(environment, base)
    if not path.exists():
        return False
    load_dotenv(path, override=False)
    return True


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------

SIGNER_COUNT = 10


class Settings(BaseModel):
    """Runtime settings resolved from the environment."""

    environment: Environment = Environment.PRODUCTION
    alchemy_api_key: str = ""
    allocations_contract_address: str = ""
    mnemonic: str = ""
    private_keys: list[str] = Field(default_factory=list)
    rpc_url: Optional[str] = None     # Overrides the profile's RPC endpoint
    artifacts_dir: Path = Path("artifacts")
    ledger_dir: Path = Path(".")

    @field_validator("private_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: object) -> object:
        if isinstance(value, str):
            return [k.strip() for k in value.split(",") if k.strip()]
        return value

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        data: dict[str, object] = {
            "environment": Environment.from_node_env(env.get("NODE_ENV")),
            "alchemy_api_key": env.get("ALCHEMY_API_KEY", ""),
            "allocations_contract_address": env.get("ALLOCATIONS_CONTRACT_ADDRESS", ""),
            "mnemonic": env.get("MNEMONIC", ""),
            "private_keys": env.get("PRIVATE_KEYS", ""),
        }
        if env.get("RPC_URL"):
            data["rpc_url"] = env["RPC_URL"]
        if env.get("ARTIFACTS_DIR"):
            data["artifacts_dir"] = env["ARTIFACTS_DIR"]
        if env.get("LEDGER_DIR"):
            data["ledger_dir"] = env["LEDGER_DIR"]
        return cls.model_validate(data)

    def require_allocations_address(self) -> str:
        if not self.allocations_contract_address:
            raise ValueError(
                "ALLOCATIONS_CONTRACT_ADDRESS is not set. "
                "Run the deploy task first and copy the printed address."
            )
        return self.allocations_contract_address


_DAY = 24 * 60 * 60
_MONTH = 30 * _DAY


class DeployParams(BaseModel):
    """Constructor arguments and wiring amounts for the deploy task.

    Token amounts are in whole tokens; ``investor_tariff`` and
    ``investor_cap`` are in whole native-currency units.  Durations and
    timestamps are in seconds.
    """

    # Reject unknown override keys
    model_config = ConfigDict(extra="forbid")

    initial_supply: int = 300_000_000
    final_supply: int = 200_000_000
    company_rate: int = 1       # per mille
    esg_fund_rate: int = 1
    burn_rate: int = 1
    investor_tariff: int = 500
    investor_cap: int = 50_000
    whitelisted_rate: int = 20  # 1 MATIC = 20 BTMT
    allocations_cliff: int
    allocations_vesting_duration: int
    private_sale_cliff: int
    private_sale_vesting_duration: int
    private_sale_opening_time: int
    private_sale_closing_time: int

    @property
    def company_wallet_tokens(self) -> int:
        return self.initial_supply // 3

    @property
    def allocations_wallet_tokens(self) -> int:
        return self.initial_supply // 3

    @property
    def crowdsales_wallet_tokens(self) -> int:
        return self.initial_supply // 3

    @property
    def max_company_wallet_transfer(self) -> int:
        return self.company_wallet_tokens // 10

    @classmethod
    def for_environment(
        cls, environment: Environment, now: float | None = None, **overrides: object
    ) -> DeployParams:
        """Build the parameter set used for *environment*.

        Sale opening and closing times are computed relative to *now*
        (defaults to the current wall-clock time).
        """
        if now is None:
            now = time.time()
        prod = environment.is_production
        data: dict[str, object] = {
            "allocations_cliff": 9 * _MONTH if prod else 3 * 60,
            "allocations_vesting_duration": 10 * _MONTH if prod else 6 * 60,
            "private_sale_cliff": 6 * _MONTH if prod else 10 * 60,
            "private_sale_vesting_duration": 10 * _MONTH if prod else 6 * 60,
            "private_sale_opening_time": int(now + (15 * 60 if prod else 5 * 60)),
            "private_sale_closing_time": int(now + (20 * _DAY if prod else _MONTH)),
        }
        data.update(overrides)
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def load_settings(
    node_env: str | None = None, base: Path | None = None
) -> Settings:
    """Resolve the profile, load its dotenv file, and return settings.

    An explicit *node_env* is exported as ``NODE_ENV`` before the dotenv
    file is read so both agree on the profile.
    """
    if node_env is not None:
        os.environ["NODE_ENV"] = node_env
    environment = Environment.from_node_env(os.environ.get("NODE_ENV"))
    load_env_file(environment, base)
    return Settings.from_env()


def load_overrides(path: Path) -> dict:
    """Load a YAML override mapping, expanding ``${VAR}`` placeholders."""
    raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw_data, dict):
        raise ValueError(f"Override file {path} must contain a mapping.")
    return _expand_env_recursive(raw_data)


def load_deploy_params(
    environment: Environment, path: Path | None = None, now: float | None = None
) -> DeployParams:
    """Return deployment parameters, applying a YAML override file if given."""
    overrides = load_overrides(path) if path is not None else {}
    return DeployParams.for_environment(environment, now=now, **overrides)
