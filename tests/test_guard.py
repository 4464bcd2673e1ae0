import pytest

from promptforge.guard import classify, is_unclear


class TestClassify:
    @pytest.mark.parametrize(
        "task",
        [
            "Write a landing page headline",
            "Summarize the quarterly report for executives",
            "api",
            "Explain OAuth2 refresh tokens in 3 steps",
            "Écrire un courriel de relance",
        ],
    )
    def test_clear_tasks(self, task):
        assert classify(task) is None

    def test_empty(self):
        assert "empty" in classify("   ")

    def test_short(self):
        assert "short" in classify("??")
        assert "short" in classify("hey")

    def test_only_symbols(self):
        assert "symbols" in classify("?!?!#$%")

    def test_only_numbers(self):
        assert "numbers" in classify("1234567")

    def test_no_vowels_long_run(self):
        assert "random characters" in classify("qwrtplkjhgfd")

    def test_dense_digit_mix(self):
        assert "mixes letters and digits" in classify("a1b2c3d4e5f6")

    def test_repeated_characters(self):
        assert "repeats" in classify("write aaaaaaa something")

    def test_five_repeats_are_fine(self):
        assert classify("write aaaaa something") is None

    def test_is_unclear(self):
        assert is_unclear("??")
        assert not is_unclear("Draft a welcome email")
