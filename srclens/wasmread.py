"""Minimal WebAssembly module reader.

Reads the sections needed to browse a module (imports, exports, function
names, code bodies and custom sections) and hands function bodies to
capstone's wasm decoder. Structured branches are resolved to the pc of the
instruction they continue at, so the resolver can draw them like native
jumps.

PCs are byte offsets into the code section payload, which is also what DWARF
line programs for WebAssembly use as addresses.
"""

import struct
from dataclasses import dataclass, field
import capstone
from capstone.wasm_const import (
    WASM_INS_BLOCK, WASM_INS_BR, WASM_INS_BR_IF, WASM_INS_BR_TABLE, WASM_INS_CALL,
    WASM_INS_ELSE, WASM_INS_END, WASM_INS_IF, WASM_INS_LOOP,
)
from srclens.common import DecodeError, RawInst

WASM_VERSION = 1

SEC_CUSTOM = 0
SEC_IMPORT = 2
SEC_FUNCTION = 3
SEC_EXPORT = 7
SEC_CODE = 10

NAME_SUBSEC_FUNCS = 1

# block types by the low 7 bits of their encoding
VALTYPES = {
    0x7f: "i32", 0x7e: "i64", 0x7d: "f32", 0x7c: "f64", 0x7b: "v128",
    0x70: "funcref", 0x6f: "externref",
}
BLOCK_EMPTY = 0x40


class Reader:
    """Cursor over a byte buffer with LEB128 helpers."""

    def __init__(self, data: bytes, pos: int = 0, end: int | None = None):
        self.data = data
        self.pos = pos
        self.end = len(data) if end is None else end

    @property
    def done(self) -> bool:
        return self.pos >= self.end

    def byte(self) -> int:
        if self.pos >= self.end:
            raise DecodeError(f"unexpected end of data at {self.pos:#x}")
        b = self.data[self.pos]
        self.pos += 1
        return b

    def bytes(self, n: int) -> bytes:
        if self.pos + n > self.end:
            raise DecodeError(f"unexpected end of data at {self.pos:#x}")
        b = self.data[self.pos:self.pos + n]
        self.pos += n
        return b

    def u32(self) -> int:
        result = shift = 0
        while True:
            b = self.byte()
            result |= (b & 0x7f) << shift
            shift += 7
            if not b & 0x80:
                return result

    def sleb(self) -> int:
        result = shift = 0
        while True:
            b = self.byte()
            result |= (b & 0x7f) << shift
            shift += 7
            if not b & 0x80:
                if b & 0x40:
                    result -= 1 << shift
                return result

    def name(self) -> str:
        return self.bytes(self.u32()).decode("utf-8", "replace")

    def sub(self, size: int) -> "Reader":
        """Reader over the next ``size`` bytes; advances past them."""
        if self.pos + size > self.end:
            raise DecodeError(f"section overruns data at {self.pos:#x}")
        r = Reader(self.data, self.pos, self.pos + size)
        self.pos += size
        return r


@dataclass(frozen=True)
class Body:
    """Code body of the func at ``index``, located at ``[offset, offset+size)`` of the code payload."""
    index: int
    offset: int
    size: int


@dataclass
class Module:
    names: dict[int, str] = field(default_factory=dict)
    exports: dict[int, str] = field(default_factory=dict)
    imports: dict[int, str] = field(default_factory=dict)
    declared: int = 0
    bodies: list[Body] = field(default_factory=list)
    customs: dict[str, bytes] = field(default_factory=dict)
    code: bytes = b""

    @property
    def num_imported(self) -> int:
        return len(self.imports)

    def func_name(self, index: int) -> str:
        for names in (self.names, self.exports, self.imports):
            if index in names:
                return names[index]
        return f"func[{index}]"


def _skip_limits(r: Reader):
    flags = r.byte()
    r.u32()
    if flags & 1:
        r.u32()


def _read_imports(r: Reader, mod: Module):
    for _ in range(r.u32()):
        module_name = r.name()
        field_name = r.name()
        kind = r.byte()
        if kind == 0:
            r.u32()
            mod.imports[len(mod.imports)] = f"{module_name}.{field_name}"
        elif kind == 1:
            r.byte()
            _skip_limits(r)
        elif kind == 2:
            _skip_limits(r)
        elif kind == 3:
            r.byte()
            r.byte()
        elif kind == 4:
            r.byte()
            r.u32()
        else:
            raise DecodeError(f"unknown import kind {kind}")


def _read_exports(r: Reader, mod: Module):
    for _ in range(r.u32()):
        name = r.name()
        kind = r.byte()
        index = r.u32()
        if kind == 0:
            mod.exports.setdefault(index, name)


def _read_names(r: Reader, mod: Module):
    while not r.done:
        subsec = r.byte()
        sr = r.sub(r.u32())
        if subsec != NAME_SUBSEC_FUNCS:
            continue
        for _ in range(sr.u32()):
            index = sr.u32()
            mod.names[index] = sr.name()


def _read_code(r: Reader, mod: Module, payload_start: int):
    count = r.u32()
    for i in range(count):
        size = r.u32()
        mod.bodies.append(Body(index=mod.num_imported + i, offset=r.pos - payload_start, size=size))
        r.pos += size
    if r.pos > r.end:
        raise DecodeError("code section overruns its size")


def read_module(data: bytes) -> Module:
    """Parse the sections of a WebAssembly binary."""
    r = Reader(data)
    if r.bytes(4) != b"\0asm":
        raise DecodeError("not a wasm module")
    version = struct.unpack("<I", r.bytes(4))[0]
    if version != WASM_VERSION:
        raise DecodeError(f"unsupported wasm version {version}")

    mod = Module()
    while not r.done:
        sec_id = r.byte()
        sr = r.sub(r.u32())
        if sec_id == SEC_CUSTOM:
            name = sr.name()
            mod.customs[name] = bytes(sr.data[sr.pos:sr.end])
            if name == "name":
                try:
                    _read_names(sr, mod)
                except DecodeError:
                    # names are optional, fall back to exports
                    mod.names.clear()
        elif sec_id == SEC_IMPORT:
            _read_imports(sr, mod)
        elif sec_id == SEC_FUNCTION:
            mod.declared = sr.u32()
        elif sec_id == SEC_EXPORT:
            _read_exports(sr, mod)
        elif sec_id == SEC_CODE:
            mod.code = bytes(sr.data[sr.pos:sr.end])
            _read_code(Reader(mod.code), mod, 0)

    if len(mod.bodies) != mod.declared:
        raise DecodeError(f"{mod.declared} funcs declared, {len(mod.bodies)} bodies present")
    return mod


@dataclass
class _Label:
    kind: str
    pc: int
    opener: int | None = None
    pending: list[int] = field(default_factory=list)


def _blocktype(insn) -> str:
    ops = insn.operands
    bt = ops[0].int7 & 0x7f if ops else BLOCK_EMPTY
    if bt == BLOCK_EMPTY:
        return insn.mnemonic
    return f"{insn.mnemonic} {VALTYPES.get(bt, f'type[{bt}]')}"


def decode_body(mod: Module, body: Body, md: capstone.Cs, lines=None) -> list[RawInst]:
    """Decode one function body with capstone's wasm decoder.

    ``md`` must have detail enabled. ``lines`` is an optional LineTable keyed
    by code payload offsets.
    """
    r = Reader(mod.code, body.offset, body.offset + body.size)
    for _ in range(r.u32()):
        r.u32()
        r.byte()
    start, stop = r.pos, r.end

    rows = []  # [pc, size, text, ref, call]
    labels = [_Label("func", start)]

    def target(depth: int, index: int) -> int:
        if depth >= len(labels):
            raise DecodeError(f"branch depth {depth} out of range")
        label = labels[-1 - depth]
        if label.kind == "loop":
            return label.pc
        label.pending.append(index)
        return 0

    end = start
    for insn in md.disasm(mod.code[start:stop], start):
        if not labels:
            raise DecodeError(f"instructions after function end at {insn.address:#x}")
        pc = insn.address
        index = len(rows)
        end = pc + insn.size
        op = insn.id
        text = f"{insn.mnemonic} {insn.op_str}".strip()
        ref = 0
        call = ""

        if op in (WASM_INS_BLOCK, WASM_INS_LOOP, WASM_INS_IF):
            text = _blocktype(insn)
            labels.append(_Label(insn.mnemonic, pc, opener=index if op == WASM_INS_IF else None))
        elif op in (WASM_INS_BR, WASM_INS_BR_IF):
            depth = insn.operands[0].varuint32
            text = f"{insn.mnemonic} {depth}"
            ref = target(depth, index)
        elif op == WASM_INS_BR_TABLE:
            ref = target(insn.operands[0].brtable.default_target, index)
        elif op == WASM_INS_CALL:
            call = mod.func_name(insn.operands[0].varuint32)
            text = f"{insn.mnemonic} {call}"
        elif op == WASM_INS_ELSE:
            label = labels[-1]
            if label.kind != "if":
                raise DecodeError(f"else without if at {pc:#x}")
            rows[label.opener][3] = pc
            label.opener = index
        elif op == WASM_INS_END:
            label = labels.pop()
            for i in label.pending:
                rows[i][3] = pc
            if label.opener is not None:
                rows[label.opener][3] = pc

        rows.append([pc, insn.size, text, ref, call])

    if end < stop:
        raise DecodeError(f"undecodable instruction at {end:#x}")
    if labels:
        raise DecodeError("function body ends without end")

    raws = []
    for pc, size, text, ref, call in rows:
        file, line = lines.file_line(pc) if lines is not None else ("", 0)
        raws.append(RawInst(pc, size, file, line, text, ref=ref, call=call))
    return raws
