"""
Tests for the configuration module.
"""

import pytest
from pydantic import ValidationError


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_env(self):
        from config.settings import get_settings

        settings = get_settings()

        assert settings.supabase_url is not None
        assert settings.supabase_service_key is not None
        assert settings.port == 8080

    def test_env_file_loaded(self, tmp_path, monkeypatch):
        import config.settings as settings_module

        env_file = tmp_path / ".env"
        env_file.write_text("REDIS_URL=redis://from-env-file:6379/2\nPORT=9999\n")
        monkeypatch.setattr(settings_module, "ENV_FILE", env_file)
        # Registered so teardown removes what the file loads
        monkeypatch.setenv("REDIS_URL", "unset")
        monkeypatch.delenv("REDIS_URL")
        monkeypatch.setenv("PORT", "8080")
        settings_module.get_settings.cache_clear()
        try:
            settings = settings_module.get_settings()
        finally:
            settings_module.get_settings.cache_clear()

        assert settings.redis_url == "redis://from-env-file:6379/2"
        # Real environment wins over the file
        assert settings.port == 8080

    def test_is_development_property(self):
        from config.settings import get_settings_for_testing

        for env in ["development", "dev", "local"]:
            assert get_settings_for_testing(environment=env).is_development is True
        assert get_settings_for_testing(environment="production").is_development is False

    def test_is_production_property(self):
        from config.settings import get_settings_for_testing

        for env in ["production", "prod"]:
            assert get_settings_for_testing(environment=env).is_production is True
        assert get_settings_for_testing(environment="staging").is_production is False

    def test_cors_origins_parsing(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(cors_origins="http://localhost:3000, http://localhost:5173")

        assert settings.cors_origins == ["http://localhost:3000", "http://localhost:5173"]

    def test_settings_for_testing(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(debug=True)

        assert settings.environment == "testing"
        assert settings.analytics_enabled is False
        assert "test" in settings.supabase_url

    def test_ranking_limits(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing()

        assert settings.default_limit == 20
        assert settings.max_limit == 50
        assert settings.skip_exclusion_hours == 24
        assert settings.interaction_lookback_days == 90


class TestWeightConfiguration:
    """Default weight vectors are configuration and validated on load."""

    def test_defaults_sum_to_one(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing()

        for context in ("pulse", "zone"):
            weights = settings.default_weights(context)
            assert sum(weights.values()) == pytest.approx(1.0)
        assert settings.default_weights("zone")["context"] == 0.30
        assert settings.default_weights("pulse")["embedding"] == 0.35

    def test_default_weights_returns_a_copy(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing()
        settings.default_weights("pulse")["embedding"] = 0.0

        assert settings.pulse_weights["embedding"] == 0.35

    def test_weights_from_env_json(self, monkeypatch):
        from config.settings import get_settings_for_testing

        monkeypatch.setenv(
            "PULSE_WEIGHTS",
            '{"embedding": 0.5, "interaction": 0.1, "overlap": 0.1, '
            '"freshness": 0.1, "context": 0.1, "reciprocity": 0.1}',
        )
        settings = get_settings_for_testing()

        assert settings.pulse_weights["embedding"] == 0.5

    @pytest.mark.parametrize("weights", [
        {"embedding": 0.5, "interaction": 0.5},
        {"embedding": 0.6, "interaction": 0.25, "overlap": 0.15,
         "freshness": 0.10, "context": 0.05, "reciprocity": 0.10},
        {"embedding": -0.1, "interaction": 0.45, "overlap": 0.15,
         "freshness": 0.20, "context": 0.20, "reciprocity": 0.10},
    ])
    def test_bad_weight_vectors_rejected(self, weights):
        from config.settings import get_settings_for_testing

        with pytest.raises(ValidationError):
            get_settings_for_testing(pulse_weights=weights)

    def test_experiment_name(self):
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(experiment_version="v3")

        assert settings.experiment_name("pulse") == "pulse_weights_v3"
        assert settings.experiment_name("zone") == "zone_weights_v3"


class TestConstants:
    """Tests for constants module."""

    def test_signal_names(self):
        from config.constants import SIGNAL_NAMES

        assert SIGNAL_NAMES == (
            "embedding", "interaction", "overlap", "freshness", "context", "reciprocity",
        )

    def test_embedding_sub_weights_sum_to_one(self):
        from config.constants import EMBEDDING_SCORING

        total = EMBEDDING_SCORING.BIO_WEIGHT + EMBEDDING_SCORING.SKILLS_WEIGHT + EMBEDDING_SCORING.INTERESTS_WEIGHT
        assert total == pytest.approx(1.0)

    def test_overlap_points_total(self):
        from config.constants import OVERLAP_SCORING

        total = (
            OVERLAP_SCORING.MAX_SKILL_POINTS
            + OVERLAP_SCORING.MAX_INTEREST_POINTS
            + OVERLAP_SCORING.COMPLEMENTARY_GOAL_POINTS
        )
        assert total == OVERLAP_SCORING.NORMALIZER

    def test_negative_signals_defined(self):
        from config.constants import DEFAULT_INTERACTION_SIGNALS

        assert DEFAULT_INTERACTION_SIGNALS["skip"].base_weight < 0
        assert DEFAULT_INTERACTION_SIGNALS["contact_exchanged"].base_weight == 100.0


class TestDatabase:
    """Tests for database module."""

    @pytest.mark.supabase
    def test_supabase_client_singleton(self):
        from config.database import get_supabase_client

        assert get_supabase_client() is get_supabase_client()

    @pytest.mark.supabase
    def test_supabase_client_works(self):
        from config.constants import TABLES
        from config.database import get_supabase_client

        result = get_supabase_client().table(TABLES.PROFILES).select("user_id").limit(1).execute()

        assert result.data is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
