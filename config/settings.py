"""
Configuration loader for the request verifier.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from models.schemas import REQUESTS_NAMESPACE, RequestType
from rules.evaluator import RuleSet


DEFAULT_MAX_AGE_SECONDS = 30 * 24 * 60 * 60     # 30 days
DEFAULT_CRON = "0 */3 * * *"


@dataclass
class VerifierConfig:
    on_contact_request: Any = None       # None | bool | int | str | {kind: ...}
    on_group_invite: Any = None
    on_group_join: Any = None
    deferred_types: list[str] = field(default_factory=list)
    max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS
    cron_expression: str = DEFAULT_CRON
    batch_size: int = 3
    namespace: str = REQUESTS_NAMESPACE
    timezone: str = "UTC"

    def rules(self) -> RuleSet:
        return RuleSet({
            RequestType.CONTACT: self.on_contact_request,
            RequestType.GROUP_INVITE: self.on_group_invite,
            RequestType.GROUP_JOIN: self.on_group_join,
        })

    def deferred(self) -> set[RequestType]:
        return {RequestType(t) for t in self.deferred_types}

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ValueError("verifier.batch_size must be >= 1")
        if self.max_age_seconds <= 0:
            raise ValueError("verifier.max_age_seconds must be positive")
        valid = {t.value for t in RequestType}
        unknown = [t for t in self.deferred_types if t not in valid]
        if unknown:
            raise ValueError(f"verifier.deferred_types has unknown types: {unknown}")
        self.rules()  # raises on bad rule values


@dataclass
class StoreConfig:
    backend: str = "memory"                            # "memory" | "file" | "redis" | "sql"
    file_dir: str = "./data"                           # directory for file backend
    file_flush_interval_s: float = 0                   # 0 = write on every mutation
    redis_url: str = "redis://localhost:6379"
    database_url: str = "sqlite:///./verifier.db"      # postgresql:// | mysql:// | sqlite://

    def as_factory_config(self) -> dict:
        return asdict(self)


@dataclass
class AccountConfig:
    platform: str
    self_id: str
    gateway_url: str = ""
    token: str = ""
    online: bool = True

    @property
    def account_id(self) -> str:
        return f"{self.platform}:{self.self_id}"


@dataclass
class PrivilegeConfig:
    default_authority: int = 1
    users: dict[str, int] = field(default_factory=dict)
    assignees: dict[str, str] = field(default_factory=dict)


@dataclass
class Settings:
    app_name: str = "RequestVerifier"
    debug: bool = False
    verifier: VerifierConfig = field(default_factory=VerifierConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    accounts: list[AccountConfig] = field(default_factory=list)
    privileges: PrivilegeConfig = field(default_factory=PrivilegeConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _resolved(value: Any) -> str:
    """Empty string for values whose ${VAR} reference was not set."""
    value = "" if value is None else str(value)
    return "" if re.search(r"\$\{\w+\}", value) else value


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """Build Settings from an already-parsed config mapping."""
    settings = Settings()
    raw = _process_values(raw or {})

    settings.app_name = raw.get("app_name", settings.app_name)
    settings.debug = raw.get("debug", settings.debug)

    if "verifier" in raw:
        v = raw["verifier"] or {}
        settings.verifier = VerifierConfig(
            on_contact_request=v.get("on_contact_request"),
            on_group_invite=v.get("on_group_invite"),
            on_group_join=v.get("on_group_join"),
            deferred_types=list(v.get("deferred_types", [])),
            max_age_seconds=float(v.get("max_age_seconds", DEFAULT_MAX_AGE_SECONDS)),
            cron_expression=v.get("cron_expression", DEFAULT_CRON),
            batch_size=int(v.get("batch_size", 3)),
            namespace=v.get("namespace", REQUESTS_NAMESPACE),
            timezone=v.get("timezone", "UTC"),
        )

    if "store" in raw:
        s = raw["store"] or {}
        settings.store = StoreConfig(
            backend=s.get("backend", settings.store.backend),
            file_dir=s.get("file_dir", settings.store.file_dir),
            file_flush_interval_s=float(s.get("file_flush_interval_s",
                                              settings.store.file_flush_interval_s)),
            redis_url=s.get("redis_url", settings.store.redis_url),
            database_url=s.get("database_url", settings.store.database_url),
        )

    for acc in raw.get("accounts", []) or []:
        settings.accounts.append(AccountConfig(
            platform=str(acc["platform"]),
            self_id=str(acc["self_id"]),
            gateway_url=_resolved(acc.get("gateway_url")),
            token=_resolved(acc.get("token")),
            online=acc.get("online", True),
        ))

    if "privileges" in raw:
        p = raw["privileges"] or {}
        settings.privileges = PrivilegeConfig(
            default_authority=int(p.get("default_authority", 1)),
            users={str(k): int(v) for k, v in (p.get("users") or {}).items()},
            assignees={str(k): str(v) for k, v in (p.get("assignees") or {}).items()},
        )

    settings.verifier.validate()
    return settings


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "VERIFIER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    raw: dict[str, Any] = {}
    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    _settings = settings_from_dict(raw)
    return _settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
