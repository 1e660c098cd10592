"""Twin prime search over number ranges.

A task asks for the lower members ``p`` of twin prime pairs ``(p, p + 2)``
inside its range. Only pairs of the form ``(6k - 1, 6k + 1)`` are reported,
which excludes ``(3, 5)``; a pair belongs to ``[start, stop]`` when
``start < p`` and ``p + 2 <= stop``.
"""

from __future__ import annotations

import os
from concurrent.futures import ProcessPoolExecutor
from math import isqrt

from microgrid_miner.protocol.models import Task

SEGMENT_SIZE = 1 << 20
_FIRST_TWIN = 5


def twin_primes(start: int, stop: int) -> list[int]:
    """Return lower twin members in ``(start, stop - 2]`` using a segmented sieve."""

    low = max(start + 1, _FIRST_TWIN)
    last = stop - 2
    if last < low:
        return []

    base_primes = _base_primes(isqrt(stop))
    twins: list[int] = []
    segment_low = low
    while segment_low <= last:
        segment_high = min(segment_low + SEGMENT_SIZE - 1, last)
        flags = _segment_flags(segment_low, segment_high + 2, base_primes)
        first = segment_low + (_FIRST_TWIN - segment_low) % 6
        for candidate in range(first, segment_high + 1, 6):
            offset = candidate - segment_low
            if flags[offset] and flags[offset + 2]:
                twins.append(candidate)
        segment_low = segment_high + 1
    return twins


def twin_primes_parallel(start: int, stop: int, processes: int | None = None) -> list[int]:
    """Split the range across worker processes and merge the results in order."""

    bounds = split_range(start, stop, processes or os.cpu_count() or 1)
    if not bounds:
        return []
    if len(bounds) == 1:
        return twin_primes(*bounds[0])
    with ProcessPoolExecutor(max_workers=len(bounds)) as executor:
        chunks = list(executor.map(twin_primes, *zip(*bounds, strict=True)))
    return [twin for chunk in chunks for twin in chunk]


def split_range(start: int, stop: int, parts: int) -> list[tuple[int, int]]:
    """Cut ``[start, stop]`` into contiguous sub-ranges that together see every pair.

    Each inner chunk is widened by two so a pair straddling a cut point is
    found by exactly one chunk.
    """

    if stop <= start or parts < 1:
        return []
    step = -(-(stop - start) // parts)
    cuts = list(range(start, stop, step)) + [stop]
    return [
        (cuts[index], min(cuts[index + 1] + 2, stop) if index + 2 < len(cuts) else stop)
        for index in range(len(cuts) - 1)
    ]


def twin_prime_computation(task: Task) -> list[int]:
    return twin_primes(task.start_number, task.stop_number)


def _base_primes(limit: int) -> tuple[int, ...]:
    if limit < 2:  # noqa: PLR2004
        return ()
    sieve = bytearray(b"\x01") * (limit + 1)
    sieve[0:2] = b"\x00\x00"
    for number in range(2, isqrt(limit) + 1):
        if sieve[number]:
            square = number * number
            sieve[square::number] = bytes(len(range(square, limit + 1, number)))
    return tuple(number for number, flag in enumerate(sieve) if flag)


def _segment_flags(low: int, high: int, base_primes: tuple[int, ...]) -> bytearray:
    flags = bytearray(b"\x01") * (high - low + 1)
    for prime in base_primes:
        square = prime * prime
        if square > high:
            break
        first = max(square, -(-low // prime) * prime)
        flags[first - low :: prime] = bytes(len(range(first - low, len(flags), prime)))
    return flags
