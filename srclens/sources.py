"""Load the source windows that a disassembled func refers to."""

import sys
from pathlib import Path
from srclens.common import LineRange, Source, SourceBlock
from srclens.lineset import LineSet

TAB = "    "


def read_lines(path: str) -> list[str]:
    """Read a source file and return its lines with tabs expanded."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    return [line.replace("\t", TAB) for line in text.splitlines()]


def slice_block(lines: list[str], r: LineRange) -> SourceBlock | None:
    """Cut a 1-based window out of ``lines``, clamped to the file length."""
    end = min(r.end, len(lines) + 1)
    if r.start >= end:
        return None
    return SourceBlock(range=LineRange(r.start, end), lines=tuple(lines[r.start - 1:end - 1]))


def load_sources(needed: dict[str, LineSet], primary: str, context: int) -> list[Source]:
    """Read every needed file once and slice the padded windows out of it.

    Files that cannot be read are reported and left out; the primary file of
    the func sorts first, the rest by name.
    """
    sources = []
    for file, lineset in needed.items():
        try:
            lines = read_lines(file)
        except OSError as e:
            print(f"[!] unable to load source from {file!r}: {e}", file=sys.stderr)
            continue

        blocks = []
        for r in lineset.ranges(context):
            block = slice_block(lines, r)
            if block is not None:
                blocks.append(block)
        sources.append(Source(file=file, blocks=tuple(blocks)))

    sources.sort(key=lambda s: (s.file != primary, s.file))
    return sources
