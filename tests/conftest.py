"""Global test configuration — runs before any test module imports."""
import os

# Must be set BEFORE any credmarket imports — slowapi reads this at init
os.environ["RATELIMIT_ENABLED"] = "False"
# Set admin API key for all tests that use the API app
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-global")
os.environ.setdefault("CREDMARKET_LOG_LEVEL", "WARNING")

TEST_ADMIN_KEY = os.environ["ADMIN_API_KEY"]
ADMIN_HEADERS = {"X-Admin-Key": TEST_ADMIN_KEY}


def pytest_configure(config):
    """Disable rate limiter after all imports."""
    from credmarket.security import limiter
    limiter.enabled = False
