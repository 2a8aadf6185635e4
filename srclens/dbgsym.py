"""DWARF line table resolution for disassembled code."""

import posixpath
from bisect import bisect_right
from dataclasses import dataclass
from elftools.dwarf.dwarfinfo import DWARFInfo


@dataclass(frozen=True)
class SrcLoc:
    """Source location resolved from DWARF line tables."""
    file: str
    line: int
    col: int = 0


def _decode(name) -> str:
    if isinstance(name, bytes):
        return name.decode("utf-8", "replace")
    return name or ""


def _comp_dir(cu) -> str:
    """Return DW_AT_comp_dir of a CU, empty if absent."""
    attr = cu.get_top_DIE().attributes.get("DW_AT_comp_dir")
    return _decode(attr.value) if attr is not None else ""


class LineTable:
    """Sorted PC -> SrcLoc index built from every CU's line program.

    Addressing model:
        * ELF: addresses are virtual addresses, same as symbol values.
        * WASM: addresses are byte offsets into the code section payload.
    Addresses past an ``end_sequence`` resolve to None, so code without line
    info never borrows the location of the preceding sequence.
    """

    def __init__(self, entries=()):
        paired = sorted(entries, key=lambda t: (t[0], t[1] is not None))
        self._addrs = [a for a, _ in paired]
        self._locs = [l for _, l in paired]

    def __len__(self):
        return len(self._addrs)

    @classmethod
    def from_dwarf(cls, dwarf: DWARFInfo) -> "LineTable":
        """Index DWARF line table entries for PC-to-source lookup."""
        entries = []
        for cu in dwarf.iter_CUs():
            lp = dwarf.line_program_for_CU(cu)
            if lp is None:
                continue

            version = lp.header["version"]
            comp_dir = _comp_dir(cu)
            include_dirs = [_decode(d) for d in lp.header.get("include_directory", [])]
            file_entries = lp.header.get("file_entry", [])

            def file_name(file_idx: int) -> str:
                # DWARF 5 indexes files and dirs from 0, older versions from 1
                # with dir 0 meaning the compilation dir.
                if version < 5:
                    file_idx -= 1
                if file_idx < 0 or file_idx >= len(file_entries):
                    return ""
                fe = file_entries[file_idx]
                fn = _decode(fe.name)
                if posixpath.isabs(fn):
                    return fn
                dir_idx = int(getattr(fe, "dir_index", 0))
                if version < 5:
                    dir_idx -= 1
                if 0 <= dir_idx < len(include_dirs):
                    base = include_dirs[dir_idx]
                else:
                    base = ""
                return posixpath.normpath(posixpath.join(comp_dir, base, fn))

            for entry in lp.get_entries():
                state = entry.state
                if state is None:
                    continue
                if state.end_sequence:
                    entries.append((int(state.address), None))
                    continue
                entries.append((int(state.address), SrcLoc(
                    file=file_name(int(state.file)),
                    line=int(state.line or 0),
                    col=int(state.column or 0),
                )))

        return cls(entries)

    def lookup(self, addr: int) -> SrcLoc | None:
        """Resolve the source location of the instruction at ``addr``."""
        i = bisect_right(self._addrs, addr) - 1
        if i < 0:
            return None
        return self._locs[i]

    def file_line(self, addr: int) -> tuple[str, int]:
        loc = self.lookup(addr)
        if loc is None or not loc.file:
            return "", 0
        return loc.file, loc.line
