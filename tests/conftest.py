"""Pytest configuration and shared fixtures."""

import random

import pytest

from crawlcore.models.config import CrawlerConfig, PersistenceConfig
from crawlcore.monitoring.logger import StructuredLogger
from tests.fixtures.sample_data import FakeClock


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return StructuredLogger(name="crawlcore.tests", level="WARNING")


@pytest.fixture
def fast_config():
    """Configuration without politeness delays or retry backoff."""
    return CrawlerConfig(
        run_mode="single",
        worker_pool_size=4,
        max_in_flight=16,
        max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter_max=0.0,
        default_min_interval=0.0,
        log_level="WARNING",
    )


@pytest.fixture
def durable_config(fast_config, tmp_path):
    """fast_config with file persistence under a temporary directory."""
    return fast_config.model_copy(update={
        "persistence": PersistenceConfig(
            enabled=True,
            state_directory=str(tmp_path / "state"),
            durability="sync",
            checkpoint_every=7,
        )
    })
