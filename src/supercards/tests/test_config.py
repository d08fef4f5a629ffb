"""Tests for configuration settings."""
import os

import pytest

from supercards.config import (
    SECONDS_PER_DAY,
    MemoryModelSettings,
    SchedulingSettings,
    Settings,
    settings,
)


def test_environment_is_test():
    assert os.environ["ENV"] == "test"
    assert settings.database.url == "sqlite:///:memory:"


def test_scheduling_defaults():
    """Test default scheduling values."""
    scheduling = SchedulingSettings()
    assert scheduling.limbo_threshold_days == 14
    assert scheduling.limbo_boost_multiplier == 50
    assert scheduling.max_limbo_boost == 500
    assert scheduling.never_shown_days == 9999.0
    assert scheduling.max_consecutive_review == 10
    assert scheduling.max_consecutive_new == 5
    assert scheduling.variety_interval == 15
    assert scheduling.min_new_ratio == 0.05
    assert scheduling.max_new_ratio == 0.5


def test_memory_model_defaults():
    model = MemoryModelSettings()
    assert model.desired_retention == 0.9
    assert model.maximum_interval_days == 36500


def test_time_constants():
    assert SECONDS_PER_DAY == 86400


def test_validate_accepts_defaults():
    Settings().validate()


def test_validate_rejects_bad_retention():
    """Test that settings validation works."""
    test_settings = Settings(memory_model=MemoryModelSettings(desired_retention=1.5))
    with pytest.raises(ValueError, match="DESIRED_RETENTION"):
        test_settings.validate()


def test_validate_rejects_inverted_ratio_bounds():
    test_settings = Settings(scheduling=SchedulingSettings(min_new_ratio=0.6, max_new_ratio=0.5))
    with pytest.raises(ValueError, match="new-card ratio"):
        test_settings.validate()


def test_validate_rejects_zero_caps():
    test_settings = Settings(scheduling=SchedulingSettings(max_consecutive_new=0))
    with pytest.raises(ValueError, match="caps must be positive"):
        test_settings.validate()
