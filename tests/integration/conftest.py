"""Pytest configuration and fixtures for integration tests.

Loads .env from the project root and skips the whole suite when no
GEMINI_API_KEY is available. These tests call the live Gemini API.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv


def pytest_configure(config):
    """Load .env before collection so module-level config sees the key."""
    env_path = Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)

    print("\n" + "=" * 70)
    print("Note: integration tests require a valid GEMINI_API_KEY")
    print(f"Environment loaded from: {env_path}")
    print("=" * 70 + "\n")


@pytest.fixture(scope="session")
def gemini_api_key() -> str:
    """The live upstream key; skips the test when it is not configured."""
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        pytest.skip("GEMINI_API_KEY not set in environment or .env")
    return key
