"""Tests for username and password validation."""

import pytest

from casebook.core.modules.user.validators import validate_password, validate_username
from casebook.errors import ValidationError


class TestValidateUsername:
    @pytest.mark.parametrize("username", ["qa", "anna.smith", "tester_01", "dev-team", "a" * 32])
    def test_valid(self, username):
        validate_username(username)

    @pytest.mark.parametrize("username", ["", "a", "a" * 33, "_hidden", "-dash", "with space", "emoji🙂", "semi;colon"])
    def test_invalid(self, username):
        with pytest.raises(ValidationError, match="Username must be"):
            validate_username(username)


class TestValidatePassword:
    def test_valid(self):
        validate_password("correct-horse")

    def test_too_short(self):
        with pytest.raises(ValidationError, match="at least 8"):
            validate_password("short")

    def test_whitespace_rejected(self):
        with pytest.raises(ValidationError, match="whitespace"):
            validate_password("pass word 123")
