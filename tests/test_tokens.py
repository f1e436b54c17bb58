"""
Tests for the round-robin token pool.
"""

import pytest

from services.timeline import ConfigError, TokenRotator


class TestTokenRotator:
    """Test token rotation."""

    def test_round_robin_order(self):
        """Tokens come back in order and wrap around."""
        rotator = TokenRotator(["a", "b", "c"])
        assert [rotator.next() for _ in range(7)] == ["a", "b", "c", "a", "b", "c", "a"]

    def test_single_token_repeats(self):
        rotator = TokenRotator(["only"])
        assert rotator.next() == "only"
        assert rotator.next() == "only"

    def test_empty_pool_fails_fast(self):
        with pytest.raises(ConfigError):
            TokenRotator([])

    def test_blank_entries_ignored(self):
        rotator = TokenRotator(["", "x", ""])
        assert len(rotator) == 1
        assert rotator.next() == "x"

    def test_from_env_trims_and_splits(self):
        rotator = TokenRotator.from_env(" a , b ,, ")
        assert len(rotator) == 2
        assert rotator.next() == "a"
        assert rotator.next() == "b"

    def test_from_env_unset(self):
        with pytest.raises(ConfigError):
            TokenRotator.from_env(None)
