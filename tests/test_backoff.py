"""
test_backoff.py
~~~~~~~~~~~~~~~
Exponential backoff policy: base 1000ms, doubling per attempt, capped at 30000ms.
"""
from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from motherhood_jobs.services.backoff import backoff_ms


def test_first_values():
    assert backoff_ms(0) == 1000
    assert backoff_ms(1) == 2000
    assert backoff_ms(2) == 4000
    assert backoff_ms(4) == 16000


def test_cap_applies():
    assert backoff_ms(5) == 30000
    assert backoff_ms(10_000) == 30000


def test_negative_count_behaves_like_zero():
    assert backoff_ms(-3) == 1000


def test_custom_base_and_cap():
    assert backoff_ms(3, base_ms=100, cap_ms=500) == 500
    assert backoff_ms(2, base_ms=100, cap_ms=500) == 400


class TestBackoffProperties:

    @given(n=st.integers(min_value=0, max_value=500))
    @settings(max_examples=100)
    def test_monotonic_non_decreasing(self, n: int):
        assert backoff_ms(n) <= backoff_ms(n + 1)

    @given(n=st.integers(min_value=-10, max_value=10_000))
    @settings(max_examples=100)
    def test_bounded_by_base_and_cap(self, n: int):
        assert 1000 <= backoff_ms(n) <= 30000
