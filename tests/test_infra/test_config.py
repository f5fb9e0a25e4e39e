"""Tests for config loading."""

from pathlib import Path

from chatbridge.config import AppConfig, ServerConfig, init_config, load_config
from chatbridge.models.conversation import ActivationMode, TemplateType


class TestConfig:
    def test_load_defaults(self, monkeypatch):
        """Loading with no file should return defaults."""
        monkeypatch.delenv("MONGODB_URI", raising=False)
        monkeypatch.delenv("CHATBRIDGE_DB", raising=False)
        config = load_config(Path("/nonexistent/config.toml"))
        assert config.mongodb.uri == "mongodb://localhost:27017"
        assert config.mongodb.database == "chatbridge"
        assert config.conversation.activation_mode == ActivationMode.HYBRID
        assert config.conversation.hybrid_check_interval_ms == 30000
        assert config.orchestrator.poll_ceiling_ms == 360_000
        assert set(config.platforms) == {"chatgpt", "gemini", "deepseek"}
        assert "chat.openai.com" in config.platforms["chatgpt"].host_patterns

    def test_init_config(self, tmp_path):
        path = tmp_path / "config.toml"
        result = init_config(path)
        assert result == path
        assert path.exists()
        # Should be loadable
        config = load_config(path)
        assert config.config_path == path
        assert config.conversation.max_turns == 50

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[conversation]\n"
            "activation_mode = true\n"
            "template_id = \"story\"\n"
            "max_turns = 8\n"
            "[orchestrator]\n"
            "message_timeout_s = 3\n"
            "[platforms.local]\n"
            "host_patterns = [\"localhost\"]\n"
        )
        config = load_config(path)
        assert config.conversation.activation_mode == ActivationMode.ALWAYS
        assert config.conversation.template_id == TemplateType.STORY
        assert config.conversation.max_turns == 8
        assert config.orchestrator.message_timeout_s == 3
        assert list(config.platforms) == ["local"]

    def test_env_overlay(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://db.example:27017")
        monkeypatch.setenv("CHATBRIDGE_DB", "bridge_test")
        monkeypatch.setenv("CHATBRIDGE_HEADLESS", "true")
        config = load_config(Path("/nonexistent/config.toml"))
        assert config.mongodb.uri == "mongodb://db.example:27017"
        assert config.mongodb.database == "bridge_test"
        assert config.browser.headless is True

    def test_socket_path_uses_runtime_dir(self, monkeypatch):
        monkeypatch.setenv("XDG_RUNTIME_DIR", "/run/user/1000")
        assert ServerConfig().resolved_socket_path == "/run/user/1000/chatbridge.sock"
        assert ServerConfig(socket_path="/tmp/x.sock").resolved_socket_path == "/tmp/x.sock"

    def test_app_config_defaults(self):
        config = AppConfig()
        assert config.platforms == {}
        assert config.conversation.context_window_size == 4
