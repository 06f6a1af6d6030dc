"""Sort-by-key primitive used to group particle slots by grid cell."""

from __future__ import annotations

import warp as wp

# The radix sort uses the upper half of both arrays as scratch space.
SCRATCH_FACTOR = 2


def sort_by_key(keys: wp.array, values: wp.array, count: int) -> None:
    """Sort ``keys[:count]`` ascending in place and permute ``values`` identically.

    Runs in O(count) passes of a device radix sort. The relative order of
    entries sharing a key is unspecified.
    """

    needed = SCRATCH_FACTOR * count
    if keys.shape[0] < needed or values.shape[0] < needed:
        raise ValueError(f"sort_by_key needs arrays of at least {needed} entries for {count} keys")
    if count == 0:
        return
    wp.utils.radix_sort_pairs(keys, values, count)
