from options_intel.config import IntelConfig


class TestIntelConfig:
    def test_defaults(self, monkeypatch) -> None:
        for var in ("TAVILY_API_KEY", "TAVILY_RPM", "INTEL_CACHE_DB", "INTEL_EMBEDDING_PROVIDER"):
            monkeypatch.delenv(var, raising=False)
        config = IntelConfig.from_env()
        assert config.tavily_api_key == ""
        assert config.earnings_ttl_days == 90
        assert config.news_ttl_days == 7
        assert config.web_research_timeout_s == 45.0
        assert config.embedding.provider == "hashing"

    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("TAVILY_API_KEY", "tvly-abc")
        monkeypatch.setenv("TAVILY_RPM", "20")
        monkeypatch.setenv("INTEL_CACHE_DB", "/tmp/cache.db")
        monkeypatch.setenv("INTEL_EMBEDDING_PROVIDER", "ollama")
        monkeypatch.setenv("OLLAMA_URL", "http://ollama:11434")

        config = IntelConfig.from_env()

        assert config.tavily_api_key == "tvly-abc"
        assert config.tavily_rpm == 20
        assert config.cache_db_path == "/tmp/cache.db"
        assert config.embedding.provider == "ollama"
        assert config.embedding.ollama_url == "http://ollama:11434"
