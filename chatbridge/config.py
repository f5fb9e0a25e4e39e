"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

from chatbridge.models.conversation import ActivationMode, ConversationConfig, parse_template

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "chatbridge"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"


def _default_socket_path() -> str:
    """Return default socket path using XDG_RUNTIME_DIR or /tmp fallback."""
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return str(Path(runtime) / "chatbridge.sock")
    return f"/tmp/chatbridge-{os.getuid()}.sock"


def _default_pid_path() -> str:
    """Return default PID file path."""
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return str(Path(runtime) / "chatbridge.pid")
    return f"/tmp/chatbridge-{os.getuid()}.pid"


DEFAULT_CONFIG_TOML = """\
[mongodb]
uri = "mongodb://localhost:27017"
database = "chatbridge"

[conversation]
auto_reply_delay_ms = 2000
max_turns = 50
context_window_size = 4
activation_mode = "hybrid"
hybrid_activation_ms = 1500
hybrid_check_interval_ms = 30000
hybrid_initial_delay_ms = 30000

[orchestrator]
message_timeout_s = 10
notify_timeout_s = 2
poll_ceiling_ms = 360000
retune_after_attempts = 5
retune_cooldown_s = 60

[browser]
headless = false
channel = ""
user_data_dir = ""

[platforms.chatgpt]
url = "https://chatgpt.com/"
host_patterns = ["chatgpt.com", "chat.openai.com"]
input_selectors = ["#prompt-textarea", "textarea"]
send_selectors = ["button[data-testid='send-button']"]
response_selectors = ["[data-message-author-role='assistant']", ".agent-turn .markdown"]
generating_selectors = [".result-streaming", "[data-testid='stop-button']"]
login_selectors = ["button[data-testid='login-button']"]

[platforms.gemini]
url = "https://gemini.google.com/app"
host_patterns = ["gemini.google.com"]
input_selectors = ["rich-textarea .ql-editor", "div[contenteditable='true']"]
send_selectors = ["button[aria-label*='Send']"]
response_selectors = ["model-response message-content", ".model-response-text"]
generating_selectors = [".loading-indicator", "button[aria-label*='Stop']"]
login_selectors = ["a[href*='ServiceLogin']"]

[platforms.deepseek]
url = "https://chat.deepseek.com/"
host_patterns = ["chat.deepseek.com"]
input_selectors = ["textarea#chat-input", "textarea"]
send_selectors = ["div[role='button'][aria-disabled='false']"]
response_selectors = [".ds-markdown", ".assistant-message"]
generating_selectors = [".loading", "button[aria-label*='Stop']"]
login_selectors = []

[server]
# socket_path and pid_file default to XDG_RUNTIME_DIR or /tmp
"""


@dataclass
class MongoConfig:
    uri: str = "mongodb://localhost:27017"
    database: str = "chatbridge"


@dataclass
class OrchestratorConfig:
    message_timeout_s: float = 10.0
    notify_timeout_s: float = 2.0
    poll_ceiling_ms: int = 360_000
    retune_after_attempts: int = 5
    retune_cooldown_s: float = 60.0


@dataclass
class BrowserConfig:
    headless: bool = False
    channel: str = ""
    user_data_dir: str = ""


@dataclass
class PlatformConfig:
    """Selector table and URL matching for one chat website."""

    name: str
    url: str = ""
    host_patterns: list[str] = field(default_factory=list)
    input_selectors: list[str] = field(default_factory=list)
    send_selectors: list[str] = field(default_factory=list)
    response_selectors: list[str] = field(default_factory=list)
    generating_selectors: list[str] = field(default_factory=list)
    login_selectors: list[str] = field(default_factory=list)


@dataclass
class ServerConfig:
    socket_path: str = ""
    pid_file: str = ""

    @property
    def resolved_socket_path(self) -> str:
        return self.socket_path or _default_socket_path()

    @property
    def resolved_pid_file(self) -> str:
        return self.pid_file or _default_pid_path()


@dataclass
class AppConfig:
    mongodb: MongoConfig = field(default_factory=MongoConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    platforms: dict[str, PlatformConfig] = field(default_factory=dict)
    server: ServerConfig = field(default_factory=ServerConfig)
    config_path: Path = DEFAULT_CONFIG_PATH


def _env_overlay(config: AppConfig) -> None:
    """Override config values with environment variables where applicable."""
    if uri := os.environ.get("MONGODB_URI"):
        config.mongodb.uri = uri
    if db := os.environ.get("CHATBRIDGE_DB"):
        config.mongodb.database = db
    if headless := os.environ.get("CHATBRIDGE_HEADLESS"):
        config.browser.headless = headless.lower() in ("1", "true", "yes")


def _parse_platform(name: str, data: dict) -> PlatformConfig:
    return PlatformConfig(
        name=name,
        url=data.get("url", ""),
        host_patterns=list(data.get("host_patterns", [])),
        input_selectors=list(data.get("input_selectors", [])),
        send_selectors=list(data.get("send_selectors", [])),
        response_selectors=list(data.get("response_selectors", [])),
        generating_selectors=list(data.get("generating_selectors", [])),
        login_selectors=list(data.get("login_selectors", [])),
    )


def _parse_conversation(data: dict) -> ConversationConfig:
    return ConversationConfig(
        auto_reply_delay_ms=data.get("auto_reply_delay_ms", 2000),
        max_turns=data.get("max_turns", 50),
        context_window_size=data.get("context_window_size", 4),
        initial_prompt=data.get("initial_prompt", ""),
        template_id=parse_template(data.get("template_id")),
        activation_mode=ActivationMode.coerce(data.get("activation_mode", "hybrid")),
        hybrid_activation_ms=data.get("hybrid_activation_ms", 1500),
        hybrid_check_interval_ms=data.get("hybrid_check_interval_ms", 30000),
        hybrid_initial_delay_ms=data.get("hybrid_initial_delay_ms", 30000),
    )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file with env var overlay."""
    path = config_path or DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    else:
        raw = tomllib.loads(DEFAULT_CONFIG_TOML)

    mongo_raw = raw.get("mongodb", {})
    orchestrator_raw = raw.get("orchestrator", {})
    browser_raw = raw.get("browser", {})
    platforms_raw = raw.get("platforms", {})
    server_raw = raw.get("server", {})

    config = AppConfig(
        mongodb=MongoConfig(
            uri=mongo_raw.get("uri", "mongodb://localhost:27017"),
            database=mongo_raw.get("database", "chatbridge"),
        ),
        conversation=_parse_conversation(raw.get("conversation", {})),
        orchestrator=OrchestratorConfig(
            message_timeout_s=orchestrator_raw.get("message_timeout_s", 10.0),
            notify_timeout_s=orchestrator_raw.get("notify_timeout_s", 2.0),
            poll_ceiling_ms=orchestrator_raw.get("poll_ceiling_ms", 360_000),
            retune_after_attempts=orchestrator_raw.get("retune_after_attempts", 5),
            retune_cooldown_s=orchestrator_raw.get("retune_cooldown_s", 60.0),
        ),
        browser=BrowserConfig(
            headless=browser_raw.get("headless", False),
            channel=browser_raw.get("channel", ""),
            user_data_dir=browser_raw.get("user_data_dir", ""),
        ),
        platforms={name: _parse_platform(name, data) for name, data in platforms_raw.items()},
        server=ServerConfig(
            socket_path=server_raw.get("socket_path", ""),
            pid_file=server_raw.get("pid_file", ""),
        ),
        config_path=path,
    )

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
