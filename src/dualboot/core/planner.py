"""
Free-space selection and partition planning.

Both functions are pure: they take scanned regions and sizes and return
values, with no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from dualboot.core.errors import InsufficientSpaceError
from dualboot.core.models import DiskRegion, PartitionPlan

ALIGNMENT_SLACK_MIB = 1
DEFAULT_MIN_HOME_MIB = 32


def select_largest_region(regions: Iterable[DiskRegion], floor_mib: int) -> DiskRegion:
    """
    Return the region with the largest size.

    Ties are broken by first-seen order. Raises InsufficientSpaceError when
    no region reaches `floor_mib`.
    """
    largest: DiskRegion | None = None
    for region in regions:
        if largest is None or region.size_mib > largest.size_mib:
            largest = region

    if largest is None:
        raise InsufficientSpaceError("No unallocated regions reported on the target disk")

    if largest.size_mib < floor_mib:
        raise InsufficientSpaceError(
            f"No sufficiently large unallocated region found: largest is "
            f"{largest.size_mib} MiB, minimum is {floor_mib} MiB"
        )

    return largest


def plan_partitions(
    region: DiskRegion,
    root_mib: int,
    allocation_mib: int,
    min_home_mib: int = DEFAULT_MIN_HOME_MIB,
) -> PartitionPlan:
    """
    Compute root/home boundaries inside `region`.

    Root starts one MiB after the allocation start and spans exactly
    `root_mib`. Home takes the remainder up to the allocation end when that
    remainder is at least `min_home_mib`. When root does not fit in the
    window it is clamped to the allocation end and also serves /home.
    """
    if root_mib <= 0:
        raise ValueError("Root size must be positive")
    if allocation_mib <= 0:
        raise ValueError("Allocation size must be positive")

    alloc_start = region.start_mib
    alloc_end = min(region.end_mib, region.start_mib + allocation_mib)
    root_start = alloc_start + ALIGNMENT_SLACK_MIB

    if root_start >= alloc_end:
        raise InsufficientSpaceError(
            f"Allocation window {alloc_start}-{alloc_end} MiB is too small for a root partition"
        )

    root_end = root_start + root_mib
    if root_end > alloc_end:
        return PartitionPlan(
            alloc_start=alloc_start,
            alloc_end=alloc_end,
            root_start=root_start,
            root_end=alloc_end,
            home_start=alloc_end,
            home_end=alloc_end,
            home_planned=False,
            root_clamped=True,
        )

    remainder = alloc_end - root_end
    return PartitionPlan(
        alloc_start=alloc_start,
        alloc_end=alloc_end,
        root_start=root_start,
        root_end=root_end,
        home_start=root_end,
        home_end=alloc_end,
        home_planned=remainder >= min_home_mib,
    )
