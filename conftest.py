"""
Root-level pytest configuration.

Environment defaults are set before any herald module reads settings, and
fixture modules are registered here so they apply to the whole suite.
"""

import os

os.environ.setdefault("ENV", "test")
# Keep PBKDF2 cheap in tests that go through the app; crypto tests build
# their own primitives with the production iteration count.
os.environ.setdefault("API_KEY_PBKDF2_ITERATIONS", "1000")

pytest_plugins = [
    "tests.fixtures.redis_fixtures",
    "tests.fixtures.api_key_fixtures",
]
