"""Link the disassembly of compiled funcs back to their source lines."""

from srclens.common import (
    Code, DecodeError, Inst, LineRange, ObjectError, Options, RawInst, Source, SourceBlock,
)
from srclens.objfile import filter_funcs, open_object, sorting_name
