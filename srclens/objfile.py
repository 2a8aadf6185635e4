"""Open object files and enumerate their funcs.

Two formats are understood, native ELF executables and WebAssembly modules.
Both readers expose the same small surface, described by ObjectFile and Func,
and ``open_object`` picks one by sniffing the magic bytes.
"""

import re
from typing import Protocol
from srclens.common import Code, ObjectError, Options

ELF_MAGIC = b"\x7fELF"
WASM_MAGIC = b"\0asm"

RX_CODE_DELIMITER = re.compile(r"[ *().]+")


class Func(Protocol):
    """Function or method that can be rendered on its own."""
    name: str

    def load(self, opts: Options) -> Code: ...


class ObjectFile(Protocol):
    """Object file, module or anything else that contains funcs."""

    def close(self) -> None: ...

    def funcs(self) -> list[Func]: ...


def sorting_name(name: str) -> str:
    """Case-insensitive sort key where ``Foo.Bar()`` and ``foo bar`` compare equal."""
    return RX_CODE_DELIMITER.sub(" ", name.lower()).strip()


def sort_funcs(funcs):
    """Stable sort by ``sorting_name``; equal keys keep discovery order."""
    return sorted(funcs, key=lambda fn: sorting_name(fn.name))


def filter_funcs(funcs, pattern: str | None = None, limit: int = 0) -> tuple[list, bool]:
    """Select funcs whose name matches ``pattern``, ignoring case.

    Returns:
        The first ``limit`` matches (all when limit is 0) and whether more
        matches were cut off.
    """
    rx = re.compile(pattern, re.IGNORECASE) if pattern else None
    out = []
    for fn in funcs:
        if rx is not None and not rx.search(fn.name):
            continue
        if limit and len(out) == limit:
            return out, True
        out.append(fn)
    return out, False


def sniff(path: str) -> str:
    """Return ``"elf"`` or ``"wasm"`` for the file at ``path``."""
    try:
        with open(path, "rb") as f:
            magic = f.read(4)
    except OSError as e:
        raise ObjectError(f"unable to open {path!r}: {e}") from e

    if magic == ELF_MAGIC:
        return "elf"
    if magic == WASM_MAGIC:
        return "wasm"
    raise ObjectError(f"{path!r}: unrecognized object format")


def open_object(path: str) -> ObjectFile:
    """Open ``path`` with the reader matching its format.

    Raises:
        ObjectError: the file is unreadable, of unknown format or malformed.
    """
    kind = sniff(path)
    if kind == "elf":
        from srclens.elfobj import ElfObject
        return ElfObject.open(path)
    from srclens.wasmobj import WasmObject
    return WasmObject.open(path)
