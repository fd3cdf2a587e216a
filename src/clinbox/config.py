"""Local configuration: paths, accounts and AI settings.

All paths derive from a single ``AppContext`` built once at startup and handed
to every component that touches disk. Nothing else in the package computes
home-directory paths on its own.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path

from clinbox.exceptions import ConfigError, ValidationError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".clinbox"
HOME_ENV_VAR = "CLINBOX_HOME"

DEFAULT_PROVIDER = "openrouter"
PROVIDERS = ("openrouter", "anthropic")
DEFAULT_MODELS = {
    "openrouter": ("google/gemini-2.0-flash-001", "anthropic/claude-sonnet-4"),
    "anthropic": ("claude-haiku-4-5-20251001", "claude-sonnet-4-5"),
}
API_KEY_ENV_VARS = {
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

_ACCOUNT_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


@dataclass(frozen=True)
class AppContext:
    """Filesystem locations for one run of the tool."""

    config_dir: Path

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def tokens_dir(self) -> Path:
        return self.config_dir / "tokens"

    @property
    def default_tasks_path(self) -> Path:
        return self.config_dir / "tasks.json"

    @property
    def log_path(self) -> Path:
        return self.config_dir / "clinbox.log"

    def tasks_path(self, config: "AppConfig") -> Path:
        if config.tasks.file_path:
            return Path(config.tasks.file_path).expanduser()
        return self.default_tasks_path

    def ensure_dir(self) -> None:
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(
                f"Failed to create config directory {self.config_dir}: {e}"
            ) from e

    @classmethod
    def from_env(cls) -> "AppContext":
        """Resolve the config directory from ``$CLINBOX_HOME`` or the home dir."""
        override = os.environ.get(HOME_ENV_VAR)
        if override:
            return cls(config_dir=Path(override).expanduser())
        try:
            home = Path.home()
        except RuntimeError as e:
            raise ConfigError("Could not find home directory") from e
        return cls(config_dir=home / CONFIG_DIR_NAME)


@dataclass
class Account:
    """One OAuth-authorized mailbox."""

    id: str
    client_id: str
    client_secret: str
    email: str | None = None


@dataclass
class AiConfig:
    provider: str = DEFAULT_PROVIDER
    api_key: str = ""
    model_analysis: str = DEFAULT_MODELS[DEFAULT_PROVIDER][0]
    model_reply: str = DEFAULT_MODELS[DEFAULT_PROVIDER][1]

    def resolved_api_key(self) -> str:
        """Configured key, else the provider's environment variable."""
        if self.api_key:
            return self.api_key
        env_var = API_KEY_ENV_VARS.get(self.provider, "")
        return os.environ.get(env_var, "") if env_var else ""


@dataclass
class TasksConfig:
    file_path: str | None = None


@dataclass
class AppConfig:
    """Contents of ``config.json``."""

    accounts: list[Account] = field(default_factory=list)
    default_account: str | None = None
    ai: AiConfig = field(default_factory=AiConfig)
    tasks: TasksConfig = field(default_factory=TasksConfig)

    # ---- Persistence ----

    @classmethod
    def load(cls, context: AppContext) -> "AppConfig":
        """Load config from disk, or return defaults if none exists yet."""
        path = context.config_path
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls.from_dict(data)
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

    def save(self, context: AppContext) -> None:
        context.ensure_dir()
        try:
            context.config_path.write_text(
                json.dumps(asdict(self), indent=2), encoding="utf-8",
            )
        except OSError as e:
            raise ConfigError(f"Failed to write config file: {e}") from e

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        accounts = [Account(**acct) for acct in data.get("accounts", [])]
        return cls(
            accounts=accounts,
            default_account=data.get("default_account"),
            ai=AiConfig(**data.get("ai", {})),
            tasks=TasksConfig(**data.get("tasks", {})),
        )

    def is_valid(self) -> bool:
        return bool(self.accounts) and bool(self.ai.resolved_api_key())

    # ---- Accounts ----

    def get_account(self, account_id: str) -> Account | None:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def resolve_account(self, account_id: str | None = None) -> Account:
        """Return the named account, or the default one when no id is given."""
        wanted = account_id or self.default_account
        if wanted is None:
            raise ConfigError(
                "No account configured. Run 'clinbox accounts add' first."
            )
        account = self.get_account(wanted)
        if account is None:
            raise ConfigError(f"Unknown account '{wanted}'")
        return account

    def add_account(self, account: Account) -> None:
        validate_account_id(account.id)
        if not account.client_id or not account.client_secret:
            raise ValidationError("Both client id and client secret are required")
        if self.get_account(account.id) is not None:
            raise ValidationError(f"Account '{account.id}' already exists")
        self.accounts.append(account)
        if self.default_account is None:
            self.default_account = account.id
        logger.info(f"Added account {account.id}")

    def remove_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise ConfigError(f"Unknown account '{account_id}'")
        self.accounts.remove(account)
        if self.default_account == account_id:
            self.default_account = self.accounts[0].id if self.accounts else None
        logger.info(f"Removed account {account_id}")
        return account

    def set_default(self, account_id: str) -> None:
        if self.get_account(account_id) is None:
            raise ConfigError(f"Unknown account '{account_id}'")
        self.default_account = account_id

    # ---- Key/value edits ----

    def set_value(self, key: str, value: str) -> None:
        if key == "ai.provider":
            if value not in PROVIDERS:
                raise ValidationError(
                    f"Unknown AI provider '{value}' (expected one of {', '.join(PROVIDERS)})"
                )
            # Models still on the old provider's defaults follow the switch.
            if (self.ai.model_analysis, self.ai.model_reply) == DEFAULT_MODELS.get(self.ai.provider):
                self.ai.model_analysis, self.ai.model_reply = DEFAULT_MODELS[value]
            self.ai.provider = value
        elif key == "ai.api_key":
            self.ai.api_key = value
        elif key in ("ai.model", "ai.model_analysis"):
            self.ai.model_analysis = value
        elif key == "ai.model_reply":
            self.ai.model_reply = value
        elif key == "tasks.file_path":
            self.tasks.file_path = value or None
        else:
            raise ValidationError(f"Unknown config key: {key}")


def validate_account_id(account_id: str) -> str:
    if not _ACCOUNT_ID_RE.match(account_id or ""):
        raise ValidationError(
            f"Invalid account id '{account_id}': use letters, digits, '.', '_' or '-'"
        )
    return account_id


def mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"
