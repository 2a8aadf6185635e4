"""WebAssembly modules: structure via wasmread, instructions via capstone, optional DWARF via pyelftools."""

import sys
from dataclasses import dataclass, field
from io import BytesIO
import capstone
from elftools.common.exceptions import DWARFError, ELFError
from elftools.construct import ConstructError
from elftools.dwarf.dwarfinfo import DebugSectionDescriptor, DWARFInfo, DwarfConfig
from srclens.arch import WASM
from srclens.cache import CodeCache
from srclens.common import Code, DecodeError, ObjectError, Options
from srclens.dbgsym import LineTable
from srclens.disasm import Disassembler, load_code
from srclens.objfile import sort_funcs
from srclens.wasmread import Body, Module, decode_body, read_module


@dataclass(frozen=True)
class WasmFunc:
    """Function defined in the module (imports have no body and are skipped)."""
    name: str
    index: int
    body: Body
    obj: "WasmObject" = field(compare=False, repr=False)

    def load(self, opts: Options) -> Code:
        return self.obj.load_code(self, opts)


def _debug_section(customs: dict[str, bytes], name: str):
    data = customs.get(name)
    if data is None:
        return None
    return DebugSectionDescriptor(stream=BytesIO(data), name=name, global_offset=0,
                                  size=len(data), address=0)


def dwarf_from_customs(customs: dict[str, bytes]) -> DWARFInfo | None:
    """Build DWARFInfo from ``.debug_*`` custom sections, None when absent."""
    if ".debug_info" not in customs or ".debug_line" not in customs:
        return None

    def sec(name):
        return _debug_section(customs, name)

    return DWARFInfo(
        config=DwarfConfig(little_endian=True, machine_arch="wasm", default_address_size=4),
        debug_info_sec=sec(".debug_info"),
        debug_aranges_sec=sec(".debug_aranges"),
        debug_abbrev_sec=sec(".debug_abbrev"),
        debug_frame_sec=None,
        eh_frame_sec=None,
        debug_str_sec=sec(".debug_str"),
        debug_loc_sec=sec(".debug_loc"),
        debug_ranges_sec=sec(".debug_ranges"),
        debug_line_sec=sec(".debug_line"),
        debug_pubtypes_sec=None,
        debug_pubnames_sec=None,
        debug_addr_sec=sec(".debug_addr"),
        debug_str_offsets_sec=sec(".debug_str_offsets"),
        debug_line_str_sec=sec(".debug_line_str"),
        debug_loclists_sec=sec(".debug_loclists"),
        debug_rnglists_sec=sec(".debug_rnglists"),
        debug_sup_sec=None,
        gnu_debugaltlink_sec=None,
        debug_types_sec=None,
    )


class WasmObject:
    """WebAssembly module opened for browsing; holds the whole binary in memory."""

    def __init__(self, path: str, module: Module):
        self.path = path
        self.module = module
        self.lines = self._line_table(path, module)
        self._funcs = sort_funcs(
            WasmFunc(name=module.func_name(body.index), index=body.index, body=body, obj=self)
            for body in module.bodies
        )
        self.cache = CodeCache()
        self._closed = False

    @classmethod
    def open(cls, path: str) -> "WasmObject":
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ObjectError(f"unable to open {path!r}: {e}") from e
        try:
            return cls(path, read_module(data))
        except DecodeError as e:
            raise ObjectError(f"{path!r}: {e}") from e

    @staticmethod
    def _line_table(path: str, module: Module) -> LineTable:
        """Best effort: a module without usable DWARF simply has no source."""
        try:
            dwarf = dwarf_from_customs(module.customs)
            if dwarf is None:
                return LineTable()
            return LineTable.from_dwarf(dwarf)
        except (DWARFError, ELFError, ConstructError, ValueError, KeyError, IndexError) as e:
            print(f"[!] unable to read line info from {path!r}: {e}", file=sys.stderr)
            return LineTable()

    def close(self):
        self._closed = True

    def funcs(self) -> list[WasmFunc]:
        return list(self._funcs)

    def decode(self, fn: WasmFunc):
        if self._closed:
            raise DecodeError("module is closed")
        return decode_body(self.module, fn.body, WASM.disassembler(), self.lines)

    def load_code(self, fn: WasmFunc, opts: Options) -> Code:
        return self.cache.get((fn, opts), lambda: self._compute(fn, opts))

    def _compute(self, fn: WasmFunc, opts: Options) -> Code:
        dis = Disassembler(WASM)
        return load_code(fn.name, lambda: self.decode(fn), dis, opts,
                         errors=(DecodeError, capstone.CsError))
