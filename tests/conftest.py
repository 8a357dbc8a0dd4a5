"""
Pytest configuration and fixtures for the liveability collector tests.
"""

from typing import Any, Dict

import pytest
from hypothesis import Verbosity, settings

from helpers import make_raw_config, make_valid_config
from liveability_config import LiveabilityConfig


@pytest.fixture
def raw_config() -> Dict[str, Any]:
    return make_raw_config()


@pytest.fixture
def liveability_config() -> LiveabilityConfig:
    return make_valid_config()


# Hypothesis settings for property-based tests
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.load_profile("default")
