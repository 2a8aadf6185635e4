"""Shared value objects for srclens."""

from dataclasses import dataclass, field
from typing import NamedTuple


class ObjectError(Exception):
    """Raised when an object file cannot be opened, parsed or closed."""


class DecodeError(Exception):
    """Raised when a single function body cannot be decoded."""


class LineRange(NamedTuple):
    """Half-open range of lines or instruction indices, ``end`` exclusive."""
    start: int
    end: int


@dataclass(frozen=True)
class Options:
    """Configuration for loading a func.

    Attributes:
        context: Number of extra source lines shown around every line that
            produced an instruction. Often pulls in the doc comment.
    """
    context: int = 3

    def __post_init__(self):
        if self.context < 0:
            raise ValueError("context must be non-negative")


@dataclass(frozen=True)
class RawInst:
    """Decoded instruction as delivered by an object format reader.

    ``ref`` and ``call`` are filled only by readers that know the target
    structurally (WASM branches and calls); otherwise the text is scanned.
    """
    pc: int
    size: int
    file: str
    line: int
    text: str
    ref: int | None = None
    call: str = ""


@dataclass(frozen=True)
class Inst:
    """Single resolved instruction of a Code.

    Attributes:
        pc: Program counter, usually the offset in the binary.
        text: Textual form of the instruction.
        file: Source file the instruction was compiled from.
        line: Line in ``file``.
        ref_pc: Referenced program counter, 0 if none.
        ref_offset: Index delta to the referenced instruction, 0 if unresolved.
        ref_stack: Lane the reference arc is drawn in.
        call: Name of the called func, used to navigate to it.
    """
    pc: int = 0
    text: str = ""
    file: str = ""
    line: int = 0
    ref_pc: int = 0
    ref_offset: int = 0
    ref_stack: int = 0
    call: str = ""


@dataclass(frozen=True)
class SourceBlock:
    """Consecutive source lines, ``related[i]`` lists instruction ranges of ``lines[i]``."""
    range: LineRange
    lines: tuple[str, ...]
    related: tuple[tuple[LineRange, ...], ...] = ()


@dataclass(frozen=True)
class Source:
    file: str
    blocks: tuple[SourceBlock, ...] = ()


@dataclass(frozen=True)
class Code:
    """Disassembly of one func combined with its source mapping."""
    name: str
    file: str = ""
    insts: tuple[Inst, ...] = ()
    max_jump: int = 0
    sources: tuple[Source, ...] = field(default_factory=tuple)
    error: str = ""

    @classmethod
    def failed(cls, err) -> "Code":
        """Placeholder Code for a func that could not be decoded."""
        return cls(name=str(err), error=str(err))
