"""
Contract configuration and process settings.

``Config`` is the one-time administrative configuration kept in the keyed
store under a single key. ``Settings`` describes where a host process
keeps its files, read from the environment.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import InvalidConfigurationError, NotInitializedError
from .money import MAX_FEE_BPS
from .storage import KeyValueStore, WriteBatch


CONFIG_KEY = "config"


def validate_fee_bps(fee_bps: int) -> int:
    if not isinstance(fee_bps, int) or isinstance(fee_bps, bool):
        raise InvalidConfigurationError(f"Fee rate must be an integer, got {fee_bps!r}")
    if fee_bps < 0 or fee_bps > MAX_FEE_BPS:
        raise InvalidConfigurationError(f"Fee rate {fee_bps} bps outside 0..{MAX_FEE_BPS}")
    return fee_bps


def validate_daily_limit(limit: Optional[int]) -> Optional[int]:
    if limit is None:
        return None
    if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
        raise InvalidConfigurationError(f"Daily send limit must be a positive integer, got {limit!r}")
    return limit


@dataclass
class Config:
    """Administrative configuration, created once by ``initialize``."""

    admin: str
    settlement_asset: str
    fee_bps: int
    initialized: bool = True
    daily_send_limit: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping) -> Config:
        return cls(**dict(d))


class ConfigStore:
    """Init/get/set lifecycle for the ``Config`` singleton."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> Optional[Config]:
        raw = self.store.get(CONFIG_KEY)
        return None if raw is None else Config.from_dict(raw)

    def is_initialized(self) -> bool:
        config = self.load()
        return config is not None and config.initialized

    def require(self) -> Config:
        config = self.load()
        if config is None or not config.initialized:
            raise NotInitializedError("Contract is not initialized")
        return config

    def stage(self, batch: WriteBatch, config: Config) -> None:
        batch.set(CONFIG_KEY, config.to_dict())


@dataclass
class Settings:
    """Filesystem and logging settings for a host process."""

    home: Path
    db_path: Path
    audit_path: Path
    audit_key_path: Path
    log_level: str = "WARNING"
    custody_address: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        home = Path(env.get("SWIFTREMIT_HOME") or Path.home() / ".swiftremit")
        return cls(
            home=home,
            db_path=Path(env.get("SWIFTREMIT_DB_PATH") or home / "state.sqlite3"),
            audit_path=Path(env.get("SWIFTREMIT_AUDIT_PATH") or home / "events.jsonl"),
            audit_key_path=home.parent / ".swiftremit-secrets" / "audit_hmac.key",
            log_level=(env.get("SWIFTREMIT_LOG_LEVEL") or "WARNING").upper(),
            custody_address=env.get("SWIFTREMIT_CUSTODY_ADDRESS") or None,
        )
