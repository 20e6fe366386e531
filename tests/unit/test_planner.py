"""
Tests for dualboot.core.planner module.
"""

import pytest

from dualboot.core.errors import InsufficientSpaceError
from dualboot.core.models import DiskRegion
from dualboot.core.planner import plan_partitions, select_largest_region


class TestSelectLargestRegion:
    """Tests for free-space selection."""

    def test_selects_largest(self) -> None:
        regions = [DiskRegion(0, 100), DiskRegion(200, 1000), DiskRegion(1050, 1080)]
        selected = select_largest_region(regions, 500)
        assert selected == DiskRegion(200, 1000)
        assert selected.size_mib == 800

    def test_tie_goes_to_first_seen(self) -> None:
        regions = [DiskRegion(0, 100), DiskRegion(500, 600)]
        assert select_largest_region(regions, 10) == DiskRegion(0, 100)

    def test_all_below_floor(self) -> None:
        regions = [DiskRegion(0, 100), DiskRegion(200, 300)]
        with pytest.raises(InsufficientSpaceError):
            select_largest_region(regions, 500)

    def test_empty(self) -> None:
        with pytest.raises(InsufficientSpaceError):
            select_largest_region([], 0)

    @pytest.mark.parametrize("floor", [0, 1, 799, 800])
    def test_floor_up_to_size_accepted(self, floor: int) -> None:
        assert select_largest_region([DiskRegion(200, 1000)], floor).size_mib == 800

    def test_floor_above_size_rejected(self) -> None:
        with pytest.raises(InsufficientSpaceError):
            select_largest_region([DiskRegion(200, 1000)], 801)


class TestPlanPartitions:
    """Tests for partition planning."""

    def test_root_and_home(self) -> None:
        plan = plan_partitions(DiskRegion(400000, 976762), 102400, 524288)
        assert plan.alloc_start == 400000
        assert plan.alloc_end == 924288
        assert plan.root_start == 400001
        assert plan.root_end == 502401
        assert plan.root_size_mib == 102400
        assert plan.home_planned
        assert plan.home_start == 502401
        assert plan.home_end == 924288
        assert not plan.root_clamped

    def test_allocation_limited_by_region(self) -> None:
        plan = plan_partitions(DiskRegion(1000, 5000), 1000, 100000)
        assert plan.alloc_end == 5000
        assert plan.home_end == 5000

    def test_root_larger_than_region_is_clamped(self) -> None:
        plan = plan_partitions(DiskRegion(200, 1000), 102400, 524288)
        assert plan.root_start == 201
        assert plan.root_end == 1000
        assert not plan.home_planned
        assert plan.home_size_mib == 0
        assert plan.root_clamped

    def test_small_remainder_means_no_home(self) -> None:
        plan = plan_partitions(DiskRegion(0, 1032), 1000, 2000, min_home_mib=32)
        assert plan.root_end == 1001
        assert plan.home_start == 1001
        assert not plan.home_planned

    def test_remainder_at_minimum_plans_home(self) -> None:
        plan = plan_partitions(DiskRegion(0, 1033), 1000, 2000, min_home_mib=32)
        assert plan.home_planned
        assert plan.home_size_mib == 32

    def test_deterministic(self) -> None:
        region = DiskRegion(12345, 700000)
        assert plan_partitions(region, 51200, 262144) == plan_partitions(region, 51200, 262144)

    @pytest.mark.parametrize(
        "region,root,alloc",
        [
            (DiskRegion(0, 10000), 100, 5000),
            (DiskRegion(100, 200000), 102400, 150000),
            (DiskRegion(5, 40), 10, 1000),
            (DiskRegion(400000, 976762), 102400, 524288),
        ],
    )
    def test_invariants(self, region: DiskRegion, root: int, alloc: int) -> None:
        plan = plan_partitions(region, root, alloc)
        assert plan.root_end - plan.root_start == root
        assert plan.root_end <= plan.home_start <= plan.alloc_end
        assert plan.alloc_end <= region.end_mib

    def test_window_too_small(self) -> None:
        with pytest.raises(InsufficientSpaceError):
            plan_partitions(DiskRegion(0, 1), 10, 1)

    def test_rejects_non_positive_sizes(self) -> None:
        with pytest.raises(ValueError):
            plan_partitions(DiskRegion(0, 100), 0, 50)
