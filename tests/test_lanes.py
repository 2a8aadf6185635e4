import itertools
import random
from srclens.lanes import Jump, assign_lanes, stack_depths


def overlaps(a: Jump, b: Jump) -> bool:
    return a.low < b.high and b.low < a.high


def max_clique(jumps) -> int:
    """Largest number of arcs live at once, checked at every start point."""
    best = 0
    for j in jumps:
        best = max(best, sum(1 for k in jumps if k.low <= j.low < k.high))
    return best


def brute_force_min_lanes(jumps) -> int:
    if not jumps:
        return 0
    for count in range(1, len(jumps) + 1):
        for colors in itertools.product(range(count), repeat=len(jumps)):
            if all(colors[a] != colors[b]
                   for a, b in itertools.combinations(range(len(jumps)), 2)
                   if overlaps(jumps[a], jumps[b])):
                return count
    return len(jumps)


def test_no_jumps():
    assert assign_lanes([]) == ({}, 0)
    assert stack_depths([]) == ({}, 1)


def test_nested_jumps_get_distinct_lanes():
    jumps = [Jump.between(1, 1, 4), Jump.between(2, 2, 3)]
    lanes, count = assign_lanes(jumps)
    assert count == 2
    assert lanes[1] != lanes[2]


def test_disjoint_jumps_share_lane():
    jumps = [Jump.between(1, 1, 2), Jump.between(3, 3, 4)]
    lanes, count = assign_lanes(jumps)
    assert count == 1
    assert lanes[1] == lanes[3] == 0


def test_backward_jump_interval_is_normalized():
    j = Jump.between(7, 0x40, 0x10)
    assert (j.low, j.high) == (0x10, 0x40)


def test_arcs_sharing_an_endpoint_share_a_lane():
    _, count = assign_lanes([Jump.between(0, 0, 5), Jump.between(1, 5, 9)])
    assert count == 1


def test_widest_first_on_equal_start():
    jumps = [Jump.between(0, 10, 12), Jump.between(1, 10, 40)]
    lanes, _ = assign_lanes(jumps)
    assert lanes[1] == 0
    assert lanes[0] == 1


def test_stack_depths_invert_lanes():
    jumps = [Jump.between(1, 1, 4), Jump.between(2, 2, 3)]
    depths, max_jump = stack_depths(jumps)
    assert max_jump == 3
    assert depths == {1: 3, 2: 2}


def test_random_sets_are_valid_and_optimal():
    rnd = random.Random(1234)
    for _ in range(60):
        jumps = []
        for i in range(rnd.randint(1, 6)):
            a, b = rnd.randint(0, 20), rnd.randint(0, 20)
            if a == b:
                b += 1
            jumps.append(Jump.between(i, a, b))

        lanes, count = assign_lanes(jumps)
        for a, b in itertools.combinations(jumps, 2):
            if overlaps(a, b):
                assert lanes[a.index] != lanes[b.index]
        assert count == max_clique(jumps)
        assert count == brute_force_min_lanes(jumps)
