"""
Tests for algorithm.byte_stats - entropy and byte distribution helpers
"""

from __future__ import annotations

import random
import tracemalloc

import pytest

from algorithm.byte_stats import (
    MAX_ENTROPY,
    byte_uniqueness,
    clamp,
    decode_text,
    entropy,
    pattern_complexity,
)
from algorithm.errors import EmptyInputError


class TestEntropy:
    """Tests for entropy()"""

    def test_single_repeated_byte_is_zero(self):
        """Test that a buffer of one repeated byte has zero entropy"""
        assert entropy(b"A" * 1000) == 0.0

    def test_uniform_distribution_is_eight(self):
        """Test that all 256 values equally often give the maximum"""
        assert entropy(bytes(range(256)) * 4) == pytest.approx(MAX_ENTROPY)

    def test_two_values_is_one_bit(self):
        """Test that two equally likely values give one bit"""
        assert entropy(b"AB" * 500) == pytest.approx(1.0)

    def test_random_buffer_in_range(self):
        """Test that entropy always lands in [0, 8]"""
        rng = random.Random(7)
        for size in (1, 3, 17, 4096):
            value = entropy(rng.randbytes(size))
            assert 0.0 <= value <= MAX_ENTROPY

    def test_accepts_bytearray_and_memoryview(self):
        """Test that other buffer types are handled like bytes"""
        data = b"hello world"
        assert entropy(bytearray(data)) == entropy(data)
        assert entropy(memoryview(data)) == entropy(data)

    def test_empty_raises(self):
        """Test that an empty buffer raises EmptyInputError"""
        with pytest.raises(EmptyInputError):
            entropy(b"")


class TestByteUniqueness:
    """Tests for byte_uniqueness()"""

    def test_all_values(self):
        assert byte_uniqueness(bytes(range(256))) == 1.0

    def test_two_values(self):
        assert byte_uniqueness(b"AB" * 10) == pytest.approx(2 / 256)

    def test_empty_raises(self):
        with pytest.raises(EmptyInputError):
            byte_uniqueness(b"")


class TestPatternComplexity:
    """Tests for pattern_complexity()"""

    def test_short_buffer_is_zero(self):
        """Test that buffers shorter than one window score zero"""
        assert pattern_complexity(b"abc") == 0.0
        assert pattern_complexity(b"") == 0.0

    def test_repetitive_buffer_is_low(self):
        """Test that one repeated byte has a single distinct window"""
        assert pattern_complexity(b"A" * 1000) == pytest.approx(1 / 250)

    def test_random_buffer_is_high(self):
        """Test that noise saturates at 1.0"""
        assert pattern_complexity(random.Random(1).randbytes(8192)) == 1.0

    @pytest.mark.parametrize(
        "data",
        [
            b"abcd",
            b"abcde",
            b"abababababab",
            b"\x00\x01\x02\x03" * 40 + b"xyz",
            bytes(range(256)) * 3,
            random.Random(3).randbytes(37),
        ],
    )
    def test_matches_distinct_window_count(self, data):
        """Test that the result equals distinct windows over len/4 on small buffers"""
        distinct = len({data[i : i + 4] for i in range(len(data) - 3)})
        assert pattern_complexity(data) == pytest.approx(min(1.0, distinct / (len(data) / 4)))

    def test_large_random_buffer_memory_is_bounded(self):
        """Test that peak memory stays proportional to a quarter of the windows"""
        data = random.Random(1).randbytes(4 * 1024 * 1024)
        tracemalloc.start()
        try:
            assert pattern_complexity(data) == 1.0
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()
        assert peak < 24 * len(data)


class TestHelpers:
    """Tests for clamp() and decode_text()"""

    def test_clamp(self):
        assert clamp(-0.5) == 0.0
        assert clamp(1.5) == 1.0
        assert clamp(0.25) == 0.25
        assert clamp(150, 0, 100) == 100

    def test_decode_text_replaces_invalid_bytes(self):
        """Test that invalid UTF-8 is replaced instead of raising"""
        text = decode_text(b"\xff\xfeabc")
        assert "abc" in text
        assert "\ufffd" in text
