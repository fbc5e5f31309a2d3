"""Pytest configuration and shared fixtures."""
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root before running tests (MONGODB_URL etc.)
project_root = Path(__file__).parent.parent
env_path = project_root / ".env"
if env_path.exists():
    load_dotenv(env_path)

# Make shared fixtures available globally
from tests.fixtures.test_data import *  # noqa: F401, F403, E402
