"""
goal: pure numeric analysis of a raw byte buffer. computes Shannon entropy over the byte histogram,
the share of distinct byte values (a cheap compression-ratio proxy), and the density of distinct
4-byte windows. also owns the best-effort text view that the pattern scanner searches.

nothing here touches the filesystem or keeps state, so every function is safe to call from any
number of concurrent analyses.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import math  # for the log2 in the entropy formula
from collections import Counter  # for counting byte frequencies

from algorithm.errors import EmptyInputError

BytesLike = bytes | bytearray | memoryview  # anything we can treat as a raw buffer

MAX_ENTROPY = 8.0  # bits per byte when all 256 values are equally likely


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    # keep a value inside [lo, hi], used for every normalized feature
    return min(hi, max(lo, x))


def _require_data(buffer: BytesLike) -> bytes:
    # turn any buffer type into bytes and refuse empty input
    data = bytes(buffer)
    if not data:  # zero length has no distribution to measure
        raise EmptyInputError("byte statistics need at least one byte")
    return data


def entropy(buffer: BytesLike) -> float:
    """
    Shannon entropy of the byte-value distribution, in bits per byte.

    A buffer of one repeated byte gives 0.0, a buffer holding each of the 256 values
    equally often gives 8.0. Raises EmptyInputError for a zero-length buffer.
    """
    data = _require_data(buffer)
    counts = Counter(data)  # byte value -> how many times it appears
    n = float(len(data))  # total number of bytes as a float
    ent = 0.0  # start with zero entropy
    for c in counts.values():  # only non-zero bins contribute
        p = c / n  # probability of this byte value
        ent -= p * math.log2(p)  # Shannon's formula, base 2
    return clamp(ent, 0.0, MAX_ENTROPY)


def byte_uniqueness(buffer: BytesLike) -> float:
    """Distinct byte values divided by 256."""
    data = _require_data(buffer)
    return len(set(data)) / 256.0


WINDOW_CHUNK = 1 << 16  # 4-byte windows fed to the set per step between early-stop checks


def pattern_complexity(buffer: BytesLike) -> float:
    """
    Distinct 4-byte windows divided by len/4, clamped to [0, 1]. 0.0 for buffers shorter than 4 bytes.

    Windows are kept as ints, read four aligned passes at a time (offsets 0..3 cover every window once),
    and counting stops as soon as the result is known to clamp at 1.0, so the set never holds more
    than about len/4 entries.
    """
    data = bytes(buffer)
    n = len(data)
    if n < 4:  # not even one full window
        return 0.0
    limit = n / 4.0  # distinct count at which the ratio saturates
    seen: set[int] = set()
    view = memoryview(data)
    for offset in range(4):
        usable = (n - offset) // 4 * 4  # whole windows starting at this offset
        if not usable:
            continue
        # native byte order is fine, we only compare windows with each other
        windows = view[offset : offset + usable].cast("I")
        for start in range(0, len(windows), WINDOW_CHUNK):
            seen.update(windows[start : start + WINDOW_CHUNK])
            if len(seen) >= limit:
                return 1.0
    return clamp(len(seen) / limit)


def decode_text(buffer: BytesLike) -> str:
    # best-effort UTF-8 view of the buffer, invalid sequences become U+FFFD instead of raising
    return bytes(buffer).decode("utf-8", errors="replace")
