"""
Tests for environment-driven settings.
"""

from connector_core.settings import Settings


class TestListSettings:
    """Tests for list-valued settings read from the environment."""

    def test_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("PHONE_REGIONS", "PK, US")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")

        settings = Settings(_env_file=None)

        assert settings.PHONE_REGIONS == ["PK", "US"]
        assert settings.CORS_ORIGINS == ["https://a.example", "https://b.example"]

    def test_json_array_env(self, monkeypatch):
        monkeypatch.setenv("PHONE_REGIONS", '["GB", "AU"]')

        assert Settings(_env_file=None).PHONE_REGIONS == ["GB", "AU"]

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PHONE_REGIONS", raising=False)

        assert Settings(_env_file=None).PHONE_REGIONS == ["US", "PK", "IN", "GB", "CA", "AU"]

    def test_explicit_list(self):
        settings = Settings(_env_file=None, CORS_ORIGINS=["http://localhost:3000"])
        assert settings.CORS_ORIGINS == ["http://localhost:3000"]
