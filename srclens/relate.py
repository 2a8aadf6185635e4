"""Link displayed source lines to the instructions compiled from them."""

from dataclasses import replace
from srclens.common import Inst, Source
from srclens.lineset import LineSet


def line_refs(insts: list[Inst]) -> dict[tuple[str, int], LineSet]:
    """Index instructions by the ``(file, line)`` they were compiled from."""
    refs: dict[tuple[str, int], LineSet] = {}
    for i, ix in enumerate(insts):
        if not ix.file or ix.line <= 0:
            continue
        refs.setdefault((ix.file, ix.line), LineSet()).add(i)
    return refs


def relate(insts: list[Inst], sources: list[Source]) -> list[Source]:
    """Fill ``SourceBlock.related`` for every displayed line."""
    refs = line_refs(insts)

    out = []
    for src in sources:
        blocks = []
        for block in src.blocks:
            related = []
            for line in range(block.range.start, block.range.start + len(block.lines)):
                hits = refs.get((src.file, line))
                related.append(tuple(hits.ranges_zero()) if hits else ())
            blocks.append(replace(block, related=tuple(related)))
        out.append(replace(src, blocks=tuple(blocks)))
    return out
