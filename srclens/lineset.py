"""Sorted set of needed line numbers and its conversion to ranges."""

from bisect import bisect_left
from srclens.common import LineRange


class LineSet:
    """Collect line numbers (or instruction indices) and merge them into ranges."""

    def __init__(self, lines=()):
        self._lines = []
        for line in lines:
            self.add(line)

    def add(self, line: int):
        i = bisect_left(self._lines, line)
        if i < len(self._lines) and self._lines[i] == line:
            return
        self._lines.insert(i, line)

    def __contains__(self, line):
        i = bisect_left(self._lines, line)
        return i < len(self._lines) and self._lines[i] == line

    def __iter__(self):
        return iter(self._lines)

    def __len__(self):
        return len(self._lines)

    def __repr__(self):
        return f"LineSet({self._lines!r})"

    def ranges(self, context: int) -> list[LineRange]:
        """Merge the lines into windows padded by ``context`` lines on each side.

        Windows that touch or overlap after padding become one window. Line
        numbers are 1-based, so windows never start before line 1.
        """
        if not self._lines:
            return []

        first = self._lines[0]
        start, end = max(1, first - context), first + context + 1
        out = []
        for line in self._lines:
            if line - context <= end:
                end = line + context + 1
            else:
                out.append(LineRange(start, end))
                start, end = max(1, line - context), line + context + 1
        out.append(LineRange(start, end))
        return out

    def ranges_zero(self) -> list[LineRange]:
        """Merge only equal or adjacent entries, without padding or clamping."""
        if not self._lines:
            return []

        start = end = self._lines[0]
        out = []
        for line in self._lines:
            if line <= end:
                end = line + 1
            else:
                out.append(LineRange(start, end))
                start, end = line, line + 1
        out.append(LineRange(start, end))
        return out
