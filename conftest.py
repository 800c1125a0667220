"""
Pytest configuration and fixtures for prerender crawler tests.
"""

import pytest
from hypothesis import settings, Verbosity
import logging
import os

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=5, deadline=5000, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=100, deadline=30000, verbosity=Verbosity.normal)

# Use fast profile by default
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


BASE_PATH = "http://localhost:45678"


@pytest.fixture(scope="function")
def source_dir(tmp_path):
    """Create an empty build directory for each test."""
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    yield build_dir


@pytest.fixture(scope="function")
def crawl_config(source_dir):
    """Provide a crawl configuration pointing at the test build directory."""
    from config import CrawlConfig, CrawlOptions

    return CrawlConfig(
        base_path=BASE_PATH,
        source_dir=str(source_dir),
        options=CrawlOptions(concurrency=2),
    )


@pytest.fixture(autouse=True)
def clean_crawler_env(monkeypatch):
    """Keep CRAWLER_* variables of the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("CRAWLER_"):
            monkeypatch.delenv(name, raising=False)


def pytest_configure(config):
    """Configure pytest with custom settings."""
    os.environ.setdefault("HYPOTHESIS_PROFILE", "fast")
    logging.getLogger("prerender_crawler").setLevel(logging.DEBUG)
