"""Tests for the retry backoff policy."""

import pytest

from weatherb.utils.backoff import exponential_backoff_ms, exponential_backoff_seconds


def test_first_three_attempts_double():
    assert exponential_backoff_ms(1, 5000) == 5000
    assert exponential_backoff_ms(2, 5000) == 10000
    assert exponential_backoff_ms(3, 5000) == 20000


@pytest.mark.parametrize("attempt", [0, -1, -10])
def test_attempts_below_one_are_immediate(attempt):
    assert exponential_backoff_ms(attempt, 5000) == 0


def test_settlement_schedule():
    delays = [exponential_backoff_ms(a, 5000) for a in range(1, 6)]
    assert delays == [5000, 10000, 20000, 40000, 80000]


def test_seconds_variant():
    assert exponential_backoff_seconds(2, 1500) == 3.0
