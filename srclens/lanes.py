"""Assign drawing lanes to jump arcs so that overlapping arcs never share one.

Each resolved reference spans the interval ``[min(pc, ref_pc), max(pc, ref_pc)]``.
Intervals are processed by start address, widest first on ties, and greedily
placed into the first lane whose previous occupant already ended. Processing
by start order makes the greedy coloring optimal for interval graphs, so the
number of lanes equals the largest set of mutually overlapping arcs.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Jump:
    """Arc of the instruction at ``index`` covering ``[low, high]``."""
    index: int
    low: int
    high: int

    @classmethod
    def between(cls, index: int, pc: int, ref_pc: int) -> "Jump":
        return cls(index, min(pc, ref_pc), max(pc, ref_pc))


def assign_lanes(jumps) -> tuple[dict[int, int], int]:
    """Return ``(lane by instruction index, lane count)``; lanes are 0-based."""
    ordered = sorted(jumps, key=lambda j: (j.low, -j.high))

    lanes: list[int | None] = []
    assigned = {}
    for jump in ordered:
        for i, high in enumerate(lanes):
            if high is not None and high <= jump.low:
                lanes[i] = None

        try:
            lane = lanes.index(None)
            lanes[lane] = jump.high
        except ValueError:
            lane = len(lanes)
            lanes.append(jump.high)
        assigned[jump.index] = lane

    return assigned, len(lanes)


def stack_depths(jumps) -> tuple[dict[int, int], int]:
    """Lanes as drawn: inverted to ``2..lane_count + 1``, lane 0 outermost.

    Returns ``(ref_stack by instruction index, max_jump)``.
    """
    assigned, count = assign_lanes(jumps)
    depths = {index: count - lane + 1 for index, lane in assigned.items()}
    return depths, count + 1
