"""Native ELF executables: symbols via pyelftools, instructions via capstone."""

import sys
from bisect import bisect_right
from dataclasses import dataclass, field
import capstone
from elftools.common.exceptions import DWARFError, ELFError
from elftools.construct import ConstructError
from elftools.elf.constants import SH_FLAGS, SHN_INDICES
from elftools.elf.elffile import ELFFile
from srclens.arch import Arch, arch_for_elf
from srclens.cache import CodeCache
from srclens.common import Code, DecodeError, ObjectError, Options, RawInst
from srclens.dbgsym import LineTable
from srclens.disasm import Disassembler, load_code
from srclens.objfile import sort_funcs


@dataclass(frozen=True)
class TextRange:
    """Executable section mapped at ``[start, end)``, stored at ``offset`` in the file."""
    start: int
    end: int
    offset: int


@dataclass(frozen=True)
class ElfFunc:
    """Function symbol with a virtual address range."""
    name: str
    start: int
    end: int
    obj: "ElfObject" = field(compare=False, repr=False)

    def load(self, opts: Options) -> Code:
        return self.obj.load_code(self, opts)


def branch_target(insn) -> int:
    """Immediate target of a direct jump or call, 0 for anything else.

    A call to the very next instruction is an unrelocated call in an object
    file and has no usable target.
    """
    is_call = insn.group(capstone.CS_GRP_CALL)
    if not is_call and not insn.group(capstone.CS_GRP_JUMP):
        return 0
    imms = [op.imm for op in insn.operands if op.type == capstone.CS_OP_IMM]
    if not imms:
        return 0
    target = imms[-1]
    if is_call and target == insn.address + insn.size:
        return 0
    return target


def decode_native(md: capstone.Cs, code: bytes, addr: int, lines: LineTable) -> list[RawInst]:
    """Decode ``code`` mapped at ``addr`` into raw instructions with line info.

    ``md`` must have detail enabled; references come from branch operands only.
    """
    raws = []
    end = addr
    for insn in md.disasm(code, addr):
        file, line = lines.file_line(insn.address)
        text = f"{insn.mnemonic} {insn.op_str}".strip()
        raws.append(RawInst(insn.address, insn.size, file, line, text, ref=branch_target(insn)))
        end = insn.address + insn.size

    if code and end < addr + len(code):
        raise DecodeError(f"undecodable instruction at {end:#x}")
    return raws


class ElfObject:
    """ELF executable opened for browsing.

    The file stays open until ``close``; func bodies are read on demand.
    """

    def __init__(self, path: str, stream, elf: ELFFile):
        self.path = path
        self._stream = stream
        self._elf = elf
        self.arch: Arch = arch_for_elf(elf["e_machine"], elf.elfclass, elf.little_endian)
        self._text = self._text_ranges(elf)
        self._funcs = sort_funcs(self._build_func_index(elf))
        self._starts = {}
        for fn in self._funcs:
            self._starts.setdefault(fn.start, fn.name)

        self.lines = LineTable()
        if elf.has_dwarf_info():
            try:
                self.lines = LineTable.from_dwarf(elf.get_dwarf_info())
            except (DWARFError, ELFError, ConstructError, ValueError, KeyError, IndexError) as e:
                print(f"[!] unable to read line info from {path!r}: {e}", file=sys.stderr)

        self.cache = CodeCache()

    @classmethod
    def open(cls, path: str) -> "ElfObject":
        try:
            stream = open(path, "rb")
        except OSError as e:
            raise ObjectError(f"unable to open {path!r}: {e}") from e
        try:
            return cls(path, stream, ELFFile(stream))
        except (ELFError, ConstructError, ValueError) as e:
            stream.close()
            raise ObjectError(f"{path!r}: {e}") from e

    def close(self):
        try:
            self._stream.close()
        except OSError as e:
            raise ObjectError(f"unable to close {self.path!r}: {e}") from e

    def funcs(self) -> list[ElfFunc]:
        return list(self._funcs)

    def func_at(self, addr: int) -> str | None:
        """Name of the func starting exactly at ``addr``."""
        return self._starts.get(addr)

    @staticmethod
    def _text_ranges(elf: ELFFile) -> list[TextRange]:
        ranges = []
        for sec in elf.iter_sections():
            if not sec["sh_flags"] & SH_FLAGS.SHF_ALLOC or not sec["sh_flags"] & SH_FLAGS.SHF_EXECINSTR:
                continue
            if sec["sh_type"] == "SHT_NOBITS" or sec["sh_size"] == 0:
                continue
            start = int(sec["sh_addr"])
            ranges.append(TextRange(start, start + int(sec["sh_size"]), int(sec["sh_offset"])))
        ranges.sort(key=lambda r: r.start)
        return ranges

    def _text_for(self, addr: int) -> TextRange | None:
        i = bisect_right([r.start for r in self._text], addr) - 1
        if i >= 0 and addr < self._text[i].end:
            return self._text[i]
        return None

    @staticmethod
    def _iter_symbol_sections(elf: ELFFile):
        """Yield relevant symbol sections from the ELF."""
        symtab = elf.get_section_by_name(".symtab")
        if symtab is not None:
            yield symtab
        dynsym = elf.get_section_by_name(".dynsym")
        if dynsym is not None:
            yield dynsym

    def _build_func_index(self, elf: ELFFile) -> list[ElfFunc]:
        """Collect function symbols inside executable sections, in discovery order."""
        items = []
        seen = set()
        for sec in self._iter_symbol_sections(elf):
            for sym in sec.iter_symbols():
                shndx = sym["st_shndx"]
                if shndx in (SHN_INDICES.SHN_UNDEF, "SHN_UNDEF"):
                    continue
                if sym["st_info"]["type"] != "STT_FUNC":
                    continue

                name = sym.name
                start = int(sym["st_value"])
                if not name or (name, start) in seen:
                    continue
                if self._text_for(start) is None:
                    continue
                seen.add((name, start))
                items.append((start, int(sym["st_size"]), name))

        # Fill missing sizes using the next symbol start, bounded by the section.
        starts = sorted({start for start, _, _ in items})
        funcs = []
        for start, size, name in items:
            text = self._text_for(start)
            if size > 0:
                end = min(start + size, text.end)
            else:
                i = bisect_right(starts, start)
                end = starts[i] if i < len(starts) and starts[i] < text.end else text.end
            funcs.append(ElfFunc(name=name, start=start, end=end, obj=self))
        return funcs

    def read_body(self, fn: ElfFunc) -> bytes:
        text = self._text_for(fn.start)
        if text is None:
            raise DecodeError(f"{fn.start:#x} is outside the text segment")
        self._stream.seek(text.offset + fn.start - text.start)
        data = self._stream.read(fn.end - fn.start)
        if len(data) != fn.end - fn.start:
            raise DecodeError("truncated function body")
        return data

    def decode(self, fn: ElfFunc) -> list[RawInst]:
        md = self.arch.disassembler()
        return decode_native(md, self.read_body(fn), fn.start, self.lines)

    def load_code(self, fn: ElfFunc, opts: Options) -> Code:
        return self.cache.get((fn, opts), lambda: self._compute(fn, opts))

    def _compute(self, fn: ElfFunc, opts: Options) -> Code:
        dis = Disassembler(self.arch, self.func_at)
        return load_code(fn.name, lambda: self.decode(fn), dis, opts,
                         errors=(DecodeError, capstone.CsError, ELFError, ConstructError,
                                 ValueError, OSError))
