"""Configuration loading and validation."""

import json
import os
import tempfile
from dataclasses import dataclass, field
from agent.exceptions import ConfigError


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant running inside a sandbox. "
    "Use the available tools to inspect files, run commands and execute code "
    "when that helps answer the user. Keep answers short."
)


@dataclass
class ModelConfig:
    """Configuration for the chat model endpoint."""
    model_name: str = "llama3.2"
    base_url: str = "http://localhost:11434/v1"
    api_key: str = ""
    temperature: float = 0.7


@dataclass
class ProviderSettings:
    """Configuration for model connectivity and retries."""
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    max_retries: int = 3
    retry_delay: float = 1.0


@dataclass
class SessionConfig:
    """Configuration for conversation persistence."""
    persist: bool = False
    storage_path: str = "./data/conversations.db"


@dataclass
class ToolExecutionConfig:
    """Configuration for tool execution limits and sandbox locations."""
    default_timeout: float = 10.0
    timeouts: dict[str, float] = field(default_factory=dict)
    max_timeout: float = 60.0
    max_output_bytes: int = 1024 * 1024
    kill_grace: float = 1.0
    workspace_dir: str = "./data/workspace"
    scratch_dir: str = field(default_factory=tempfile.gettempdir)
    python_executable: str = "python3"
    node_executable: str = "node"
    search_url: str = "https://api.duckduckgo.com/"

    def timeout_for(self, tool_name: str) -> float:
        return self.timeouts.get(tool_name, self.default_timeout)


@dataclass
class TelemetryConfig:
    """Configuration for telemetry and metrics logging."""
    enabled: bool = False
    log_dir: str = "./data/metrics"
    otel_enabled: bool = False
    otel_endpoint: str | None = None
    otel_service_name: str = "tool-agent-sandbox"


@dataclass
class AgentConfig:
    """Complete agent configuration."""
    chat_model: ModelConfig = field(default_factory=ModelConfig)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    session: SessionConfig = field(default_factory=SessionConfig)
    tool_execution: ToolExecutionConfig = field(default_factory=ToolExecutionConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    max_iterations: int = 5
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    data_dir: str = "data"
    log_dir: str = "data/logs"
    log_level: str = "INFO"


def load_config(config_path: str = "config.json") -> AgentConfig:
    """Load configuration from JSON file with defaults."""
    if not os.path.exists(config_path):
        config = AgentConfig()
        _apply_env_overrides(config.chat_model)
        return config

    try:
        with open(config_path, "r") as f:
            raw = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    data_dir = raw.get("data_dir", "data")

    chat_model = _load_model_settings(raw.get("chat_model", {}))
    _apply_env_overrides(chat_model)

    provider = _load_provider_settings(raw.get("provider", {}))
    session = _load_session_settings(raw.get("session", {}), data_dir)
    tool_execution = _load_tool_execution_settings(raw.get("tool_execution", {}), data_dir)
    telemetry = _load_telemetry_settings(raw.get("telemetry", {}), data_dir)

    max_iterations = _coerce_int(raw.get("max_iterations", 5), "max_iterations", 1)

    system_prompt = raw.get("system_prompt", DEFAULT_SYSTEM_PROMPT)
    if not isinstance(system_prompt, str):
        raise ConfigError("system_prompt must be a string")

    log_level = raw.get("log_level", "INFO")
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise ConfigError("log_level must be one of DEBUG, INFO, WARNING, ERROR")

    log_dir = raw.get("log_dir", os.path.join(data_dir, "logs"))

    # Ensure data directories exist
    for d in [data_dir, log_dir, tool_execution.workspace_dir, telemetry.log_dir]:
        os.makedirs(d, exist_ok=True)

    return AgentConfig(
        chat_model=chat_model,
        provider=provider,
        session=session,
        tool_execution=tool_execution,
        telemetry=telemetry,
        max_iterations=max_iterations,
        system_prompt=system_prompt,
        data_dir=data_dir,
        log_dir=log_dir,
        log_level=log_level,
    )


def _apply_env_overrides(model: ModelConfig) -> None:
    env_base_url = os.getenv("AGENT_BASE_URL")
    if env_base_url:
        model.base_url = env_base_url
    env_api_key = os.getenv("AGENT_API_KEY")
    if env_api_key:
        model.api_key = env_api_key


def _load_model_settings(raw: dict) -> ModelConfig:
    """Parse and validate chat model settings."""
    model_name = raw.get("model_name", "llama3.2")
    if not isinstance(model_name, str) or not model_name.strip():
        raise ConfigError("chat_model.model_name must be a non-empty string")

    base_url = raw.get("base_url", "http://localhost:11434/v1")
    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError("chat_model.base_url must be a non-empty string")

    api_key = raw.get("api_key", "")
    if not isinstance(api_key, str):
        raise ConfigError("chat_model.api_key must be a string")

    return ModelConfig(
        model_name=model_name.strip(),
        base_url=base_url.strip(),
        api_key=api_key.strip(),
        temperature=_coerce_float(raw.get("temperature", 0.7), "chat_model.temperature", 0.0),
    )


def _load_provider_settings(raw: dict) -> ProviderSettings:
    """Parse and validate model connectivity settings."""
    return ProviderSettings(
        connect_timeout=_coerce_float(raw.get("connect_timeout", 5.0), "provider.connect_timeout", 0.1),
        read_timeout=_coerce_float(raw.get("read_timeout", 120.0), "provider.read_timeout", 0.1),
        max_retries=_coerce_int(raw.get("max_retries", 3), "provider.max_retries", 1),
        retry_delay=_coerce_float(raw.get("retry_delay", 1.0), "provider.retry_delay", 0.0),
    )


def _load_session_settings(raw: dict, data_dir: str) -> SessionConfig:
    """Parse and validate conversation persistence settings."""
    persist = raw.get("persist", False)
    if not isinstance(persist, bool):
        raise ConfigError("session.persist must be a boolean")

    storage_path = raw.get("storage_path", os.path.join(data_dir, "conversations.db"))
    if not isinstance(storage_path, str) or not storage_path.strip():
        raise ConfigError("session.storage_path must be a non-empty string")

    return SessionConfig(persist=persist, storage_path=storage_path)


def _load_tool_execution_settings(raw: dict, data_dir: str) -> ToolExecutionConfig:
    """Parse and validate tool execution settings."""
    default_timeout = _coerce_float(
        raw.get("default_timeout", 10.0),
        "tool_execution.default_timeout",
        0.1,
    )

    timeouts_raw = raw.get("timeouts", {})
    if timeouts_raw is None:
        timeouts_raw = {}
    if not isinstance(timeouts_raw, dict):
        raise ConfigError("tool_execution.timeouts must be an object")

    timeouts: dict[str, float] = {}
    for key, value in timeouts_raw.items():
        if not isinstance(key, str):
            raise ConfigError("tool_execution.timeouts keys must be strings")
        timeouts[key] = _coerce_float(value, f"tool_execution.timeouts.{key}", 0.1)

    max_timeout = _coerce_float(raw.get("max_timeout", 60.0), "tool_execution.max_timeout", 0.1)
    if max_timeout < default_timeout:
        raise ConfigError("tool_execution.max_timeout must be >= tool_execution.default_timeout")

    max_output_bytes = _coerce_int(
        raw.get("max_output_bytes", 1024 * 1024),
        "tool_execution.max_output_bytes",
        1024,
    )
    kill_grace = _coerce_float(raw.get("kill_grace", 1.0), "tool_execution.kill_grace", 0.0)

    paths = {}
    for key, default in (
        ("workspace_dir", os.path.join(data_dir, "workspace")),
        ("scratch_dir", tempfile.gettempdir()),
        ("python_executable", "python3"),
        ("node_executable", "node"),
        ("search_url", "https://api.duckduckgo.com/"),
    ):
        value = raw.get(key, default)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"tool_execution.{key} must be a non-empty string")
        paths[key] = value.strip()

    return ToolExecutionConfig(
        default_timeout=default_timeout,
        timeouts=timeouts,
        max_timeout=max_timeout,
        max_output_bytes=max_output_bytes,
        kill_grace=kill_grace,
        **paths,
    )


def _load_telemetry_settings(raw: dict, data_dir: str) -> TelemetryConfig:
    """Parse and validate telemetry settings."""
    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError("telemetry.enabled must be a boolean")

    log_dir = raw.get("log_dir", os.path.join(data_dir, "metrics"))
    if not isinstance(log_dir, str) or not log_dir.strip():
        raise ConfigError("telemetry.log_dir must be a non-empty string")

    otel_enabled = raw.get("otel_enabled", False)
    if not isinstance(otel_enabled, bool):
        raise ConfigError("telemetry.otel_enabled must be a boolean")

    otel_endpoint = raw.get("otel_endpoint")
    if otel_endpoint is not None and (not isinstance(otel_endpoint, str) or not otel_endpoint.strip()):
        raise ConfigError("telemetry.otel_endpoint must be a non-empty string if provided")

    otel_service_name = raw.get("otel_service_name", "tool-agent-sandbox")
    if not isinstance(otel_service_name, str) or not otel_service_name.strip():
        raise ConfigError("telemetry.otel_service_name must be a non-empty string")

    return TelemetryConfig(
        enabled=enabled,
        log_dir=log_dir,
        otel_enabled=otel_enabled,
        otel_endpoint=otel_endpoint.strip() if isinstance(otel_endpoint, str) else None,
        otel_service_name=otel_service_name.strip(),
    )


def _coerce_float(value: object, name: str, min_value: float) -> float:
    """Coerce config value to float with basic validation."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number")
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def _coerce_int(value: object, name: str, min_value: int) -> int:
    """Coerce config value to int with basic validation."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer")

    if value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value
