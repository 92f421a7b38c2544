"""Tests for settings validation."""
import pytest
from pydantic import ValidationError

from config import Settings


def test_default_format_is_normalized():
    assert Settings(default_format=" WEBP ").default_format == "webp"


def test_unknown_default_format_is_rejected():
    with pytest.raises(ValidationError):
        Settings(default_format="bmpx")


def test_default_quality_bounds():
    with pytest.raises(ValidationError):
        Settings(default_quality=0)
