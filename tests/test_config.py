import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core import config as config_module
from core.config import Config, get_config, reload_config


class TestConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SCRIPT_MODEL", raising=False)
        config = Config()

        assert config.retry.max_attempts == 10
        assert config.retry.base_delay_ms == 5000
        assert config.retry.max_delay_ms == 60000
        assert config.retry.safety_margin_ms == 2000
        assert config.pipeline.success_cooldown_seconds == 2.0
        assert config.pipeline.failure_cooldown_seconds == 5.0
        assert config.models.script_model == "gemini-3-pro-preview"
        assert config.render.resolution == "720p"

    def test_api_key_fallback(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.setenv("API_KEY", "studio-key")

        assert Config().api.google_api_key == "studio-key"

    def test_validate(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("API_KEY", raising=False)
        config = Config()
        config.models.default_video_model = "veo-0"

        issues = config.validate()

        assert any("GOOGLE_API_KEY" in issue for issue in issues)
        assert any("veo-0" in issue for issue in issues)

    def test_reload_picks_up_environment(self, monkeypatch):
        monkeypatch.setattr(config_module, "_config", None)
        monkeypatch.setenv("MISSION_OUTPUT_DIR", "/tmp/first")
        assert get_config().pipeline.output_dir == "/tmp/first"

        monkeypatch.setenv("MISSION_OUTPUT_DIR", "/tmp/second")
        assert get_config().pipeline.output_dir == "/tmp/first"

        reload_config()
        assert get_config().pipeline.output_dir == "/tmp/second"
