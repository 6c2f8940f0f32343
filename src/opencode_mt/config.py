"""Configuration loader: YAML file with environment variable fallbacks."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

DEFAULT_SERVER_URL = "http://127.0.0.1:4096"
DEFAULT_PROVIDER_ID = "opencode"
DEFAULT_MODEL_ID = "big-pickle"


@dataclass
class ServerConfig:
    url: str = DEFAULT_SERVER_URL
    username: str = "opencode"
    password: str = ""
    autostart: bool = False
    request_timeout: int = 180  # seconds; bounds the send-message call
    connect_timeout: float = 10.0


@dataclass
class ModelConfig:
    provider_id: str = DEFAULT_PROVIDER_ID
    model_id: str = DEFAULT_MODEL_ID
    agent: str | None = None

    @property
    def ref(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


@dataclass
class CliConfig:
    default_width: int = 80
    thinking_tail_lines: int = 10
    retry_tick: float = 1.0  # seconds between retry countdown repaints
    idle_grace: float = 2.0  # seconds to wait for idle after the send returns
    log_parts: bool = False


@dataclass
class AppSettings:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".opencode-mt")


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    cli: CliConfig = field(default_factory=CliConfig)
    app: AppSettings = field(default_factory=AppSettings)


def _resolve_data_dir() -> Path:
    env_dir = os.environ.get("OCMT_DATA_DIR")
    if env_dir:
        return Path(os.path.expanduser(env_dir))
    return Path.home() / ".opencode-mt"


def _get_config_path(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir / "config.yaml"
    return _resolve_data_dir() / "config.yaml"


def _get_sessions_path(data_dir: Path | None = None) -> Path:
    return (data_dir or _resolve_data_dir()) / "sessions.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return raw


def _as_bool(value: Any) -> bool:
    return str(value).lower() not in ("false", "0", "no", "")


def split_model_ref(ref: str) -> tuple[str, str]:
    """Split ``provider/model`` into its halves; the model id may contain slashes."""
    provider, sep, model = ref.strip().partition("/")
    if not sep or not provider or not model:
        raise ValueError(f"Model must look like provider/model, got {ref!r}")
    return provider, model


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or _get_config_path()
    raw = _read_yaml(path)

    server_raw = raw.get("server") or {}
    url = server_raw.get("url") or os.environ.get("OPENCODE_SERVER_URL", DEFAULT_SERVER_URL)
    username = server_raw.get("username") or os.environ.get("OPENCODE_SERVER_USERNAME", "opencode")
    password = server_raw.get("password") or os.environ.get("OPENCODE_SERVER_PASSWORD", "")
    autostart = _as_bool(server_raw.get("autostart", os.environ.get("OCMT_AUTOSTART", "false")))
    try:
        request_timeout = max(10, min(600, int(server_raw.get("request_timeout", 180))))
    except (ValueError, TypeError):
        request_timeout = 180
    try:
        connect_timeout = max(1.0, float(server_raw.get("connect_timeout", 10.0)))
    except (ValueError, TypeError):
        connect_timeout = 10.0

    server = ServerConfig(
        url=str(url).rstrip("/"),
        username=str(username),
        password=str(password),
        autostart=autostart,
        request_timeout=request_timeout,
        connect_timeout=connect_timeout,
    )

    model_raw = raw.get("model") or {}
    model = ModelConfig(
        provider_id=str(model_raw.get("provider_id") or DEFAULT_PROVIDER_ID),
        model_id=str(model_raw.get("model_id") or DEFAULT_MODEL_ID),
        agent=model_raw.get("agent") or None,
    )
    env_model = os.environ.get("OCMT_MODEL")
    if env_model:
        try:
            model.provider_id, model.model_id = split_model_ref(env_model)
        except ValueError:
            pass

    cli_raw = raw.get("cli") or {}
    cli = CliConfig()
    try:
        cli.default_width = max(20, int(cli_raw.get("default_width", cli.default_width)))
    except (ValueError, TypeError):
        pass
    try:
        cli.thinking_tail_lines = max(1, int(cli_raw.get("thinking_tail_lines", cli.thinking_tail_lines)))
    except (ValueError, TypeError):
        pass
    try:
        cli.retry_tick = max(0.1, float(cli_raw.get("retry_tick", cli.retry_tick)))
    except (ValueError, TypeError):
        pass
    try:
        cli.idle_grace = max(0.0, float(cli_raw.get("idle_grace", cli.idle_grace)))
    except (ValueError, TypeError):
        pass
    cli.log_parts = _as_bool(cli_raw.get("log_parts", False))

    app_raw = raw.get("app") or {}
    data_dir = Path(os.path.expanduser(app_raw.get("data_dir", str(path.parent))))

    return AppConfig(server=server, model=model, cli=cli, app=AppSettings(data_dir=data_dir))


def _locked_update(path: Path, update: Callable[[dict[str, Any]], None]) -> None:
    """Read-modify-write a YAML file under an advisory lock."""
    try:
        import fcntl

        _has_fcntl = True
    except ImportError:
        _has_fcntl = False

    path.parent.mkdir(parents=True, exist_ok=True)

    def _read_modify_write() -> None:
        raw = _read_yaml(path)
        update(raw)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(raw, f, default_flow_style=False, sort_keys=False)
        try:
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        except OSError:
            pass

    if _has_fcntl:
        lock_path = path.with_suffix(".lock")
        with open(lock_path, "w") as lock_f:
            fcntl.flock(lock_f, fcntl.LOCK_EX)
            try:
                _read_modify_write()
            finally:
                fcntl.flock(lock_f, fcntl.LOCK_UN)
    else:
        _read_modify_write()


def save_model_choice(
    provider_id: str | None = None,
    model_id: str | None = None,
    agent: str | None = None,
    config_path: Path | None = None,
) -> None:
    """Persist model/agent selection into the ``model`` section of config.yaml."""

    def _update(raw: dict[str, Any]) -> None:
        section = raw.get("model")
        if not isinstance(section, dict):
            section = {}
            raw["model"] = section
        if provider_id:
            section["provider_id"] = provider_id
        if model_id:
            section["model_id"] = model_id
        if agent:
            section["agent"] = agent

    _locked_update(config_path or _get_config_path(), _update)


def save_log_parts(enabled: bool, config_path: Path | None = None) -> None:
    def _update(raw: dict[str, Any]) -> None:
        section = raw.get("cli")
        if not isinstance(section, dict):
            section = {}
            raw["cli"] = section
        section["log_parts"] = enabled

    _locked_update(config_path or _get_config_path(), _update)


def load_session_id(cwd: str | None = None, data_dir: Path | None = None) -> str | None:
    """Return the session id last used in ``cwd``, if any."""
    cwd = cwd or os.getcwd()
    try:
        raw = _read_yaml(_get_sessions_path(data_dir))
    except ValueError:
        return None
    value = raw.get(cwd)
    return str(value) if value else None


def save_session_id(session_id: str, cwd: str | None = None, data_dir: Path | None = None) -> None:
    cwd = cwd or os.getcwd()

    def _update(raw: dict[str, Any]) -> None:
        raw[cwd] = session_id

    _locked_update(_get_sessions_path(data_dir), _update)
