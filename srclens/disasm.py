"""Turn a decoded instruction stream into a cross-referenced Code.

The stream arrives as RawInst tuples from one of the object readers. This
module resolves jump and call references to instruction indices, assigns arc
lanes, gathers the needed source windows and links them back to the
instructions.
"""

import re
import sys
from dataclasses import replace
from typing import Callable, Optional
from srclens.arch import Arch
from srclens.common import Code, DecodeError, Inst, Options, RawInst
from srclens.lanes import Jump, stack_depths
from srclens.lineset import LineSet
from srclens.relate import relate
from srclens.sources import load_sources

# absolute target, e.g. "jne 0x401136" or "b.ne #0x4004d0"
RX_REF_ABS = re.compile(r"\s#?0x([0-9a-fA-F]+)$")
# relative target in instruction units, e.g. "BNE -3(PC)"
RX_REF_REL = re.compile(r"\s(-?[0-9]+)\(PC\)$")


def find_ref(text: str, pc: int, stride: int = 1) -> int:
    """Return the program counter referenced by an instruction text, 0 if none."""
    m = RX_REF_ABS.search(text)
    if m:
        return int(m.group(1), 16)
    m = RX_REF_REL.search(text)
    if m:
        return max(0, pc + int(m.group(1)) * stride)
    return 0


def strip_traps(raws: list[RawInst], arch: Arch) -> list[RawInst]:
    """Drop trap padding the compiler placed after the last real instruction."""
    end = len(raws)
    while end > 0 and arch.is_trap(raws[end - 1].text):
        end -= 1
    return raws[:end]


class Disassembler:
    """Resolve references of one func's instruction stream.

    ``func_at`` maps an address to the name of the func starting there and is
    used to make calls navigable.
    """

    def __init__(self, arch: Arch, func_at: Optional[Callable[[int], Optional[str]]] = None):
        self.arch = arch
        self.func_at = func_at

    def _ref_of(self, raw: RawInst) -> int:
        if raw.ref is not None:
            return raw.ref
        return find_ref(raw.text, raw.pc, self.arch.stride)

    def resolve(self, raws: list[RawInst]) -> tuple[list[Inst], int]:
        """Return the resolved instructions with lanes assigned, and ``max_jump``."""
        raws = strip_traps(list(raws), self.arch)

        refs = [self._ref_of(raw) for raw in raws]
        targets = {ref for ref in refs if ref}

        insts = []
        pc_to_index = {}
        for raw, ref in zip(raws, refs):
            if raw.pc in targets:
                # empty row in front of every jump target
                insts.append(Inst())
            pc_to_index[raw.pc] = len(insts)
            insts.append(Inst(pc=raw.pc, text=raw.text, file=raw.file, line=raw.line,
                              ref_pc=ref, call=raw.call))

        jumps = []
        for i, ix in enumerate(insts):
            if not ix.ref_pc:
                continue
            target = pc_to_index.get(ix.ref_pc)
            if target is None:
                # leaves the func; navigable when it lands on another func
                if not ix.call and self.func_at is not None:
                    insts[i] = replace(ix, call=self.func_at(ix.ref_pc) or "")
                continue
            if target == i:
                continue
            insts[i] = replace(ix, ref_offset=target - i)
            jumps.append(Jump.between(i, ix.pc, ix.ref_pc))

        depths, max_jump = stack_depths(jumps)
        for i, depth in depths.items():
            insts[i] = replace(insts[i], ref_stack=depth)

        return insts, max_jump

    def build(self, name: str, file: str, raws: list[RawInst], opts: Options) -> Code:
        """Resolve ``raws`` and attach the source windows they were compiled from."""
        insts, max_jump = self.resolve(raws)

        needed: dict[str, LineSet] = {}
        for ix in insts:
            if ix.file and ix.line > 0:
                needed.setdefault(ix.file, LineSet()).add(ix.line)

        sources = load_sources(needed, file, opts.context)
        return Code(
            name=name,
            file=file,
            insts=tuple(insts),
            max_jump=max_jump,
            sources=tuple(relate(insts, sources)),
        )


def primary_file(raws: list[RawInst]) -> str:
    """File of the first instruction that carries line info."""
    return next((raw.file for raw in raws if raw.file), "")


def load_code(name: str, decode: Callable[[], list[RawInst]],
              disassembler: Disassembler, opts: Options, errors=(DecodeError,)) -> Code:
    """Decode and build a Code, turning decode failures listed in ``errors`` into an error Code."""
    try:
        raws = decode()
    except errors as e:
        err = f"{name}: {e}"
        print(f"[!] unable to disassemble {err}", file=sys.stderr)
        return Code.failed(err)
    return disassembler.build(name, primary_file(raws), raws, opts)
