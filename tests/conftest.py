"""
Pytest configuration and shared fixtures for the matching tests.
"""
import os
import random
import sys
import time
from datetime import datetime, timezone

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Settings are read at import time by api.app; give tests a complete environment
TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("ANALYTICS_ENABLED", "false")


# ============================================================================
# Fixtures: Time, Randomness, Settings
# ============================================================================

@pytest.fixture
def now() -> datetime:
    """Fixed reference time for every time-dependent rule."""
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def rng() -> random.Random:
    """Seeded RNG for reproducible experiment assignment."""
    return random.Random(1234)


@pytest.fixture
def settings():
    """Test settings with three-dimensional embeddings."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing(embedding_dimension=3)


# ============================================================================
# Fixtures: Stores
# ============================================================================

@pytest.fixture
def store():
    """Empty in-memory signal store."""
    from matching.store import InMemorySignalStore
    return InMemorySignalStore()


@pytest.fixture
def experiment_store():
    """Empty in-memory experiment store."""
    from matching.experiments import InMemoryExperimentStore
    return InMemoryExperimentStore()


@pytest.fixture
def mock_supabase_client():
    """MagicMock standing in for a Supabase client in store/analytics tests."""
    from unittest.mock import MagicMock
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.return_value.data = [{"id": "test"}]
    return client


# ============================================================================
# JWT Token Generation
# ============================================================================

def generate_test_jwt(user_id: str = "user-a", exp_hours: int = 24, secret: str = None) -> str:
    """
    Generate a Supabase-shaped access token signed with the test secret.

    Args:
        user_id: The user ID to include in the token (``sub``)
        exp_hours: Hours until token expires; negative for an expired token
        secret: Signing secret (default: the test secret)
    """
    import jwt

    issued = int(time.time())
    payload = {
        "sub": user_id,
        "aud": "authenticated",
        "role": "authenticated",
        "email": f"{user_id}@test.com",
        "exp": issued + (exp_hours * 3600),
        "iat": issued,
        "is_anonymous": False,
    }
    return jwt.encode(payload, secret or os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def make_token():
    """Token factory for tests that need expired or foreign-signed tokens."""
    return generate_test_jwt


@pytest.fixture
def auth_headers() -> dict:
    """Bearer headers for user-a."""
    return {"Authorization": f"Bearer {generate_test_jwt()}"}


# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")


def pytest_collection_modifyitems(config, items):
    """Auto-skip Supabase tests unless a real project is configured."""
    skip_supabase = pytest.mark.skip(reason="Supabase tests require credentials")
    live_supabase = os.getenv("SUPABASE_URL", "") not in ("", "https://test.supabase.co")

    for item in items:
        if "supabase" in item.keywords and not live_supabase:
            item.add_marker(skip_supabase)
