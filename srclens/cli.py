#!/bin/env python3
"""CLI entrypoint for srclens.

Opens an ELF executable or a WebAssembly module, picks the funcs matching a
filter and prints their disassembly next to the source lines they came from.
"""

import argparse
import re
import sys
from yaspin import yaspin
from srclens.common import Code, ObjectError, Options
from srclens.objfile import filter_funcs, open_object


def parse_args(argv=None) -> argparse.Namespace:
    """Define and parse CLI arguments."""
    p = argparse.ArgumentParser(
        description="Show disassembly of funcs linked to their source lines"
    )
    p.add_argument("object", help="Path to an ELF executable or a wasm module")
    p.add_argument(
        "--filter",
        default=None,
        help="Only funcs whose name matches this regexp",
    )
    p.add_argument(
        "--context",
        type=int,
        default=3,
        help="Source lines shown around every referenced line. Default: %(default)s",
    )
    p.add_argument(
        "--max-matches",
        type=int,
        default=10,
        help="Maximum number of funcs to disassemble, 0 for all. Default: %(default)s",
    )
    p.add_argument(
        "--list",
        action="store_true",
        help="Only list the matching func names",
    )
    return p.parse_args(argv)


def lane_marker(code: Code, i: int) -> str:
    """Gutter column for instruction ``i``: its arc lane and direction."""
    ix = code.insts[i]
    width = max(code.max_jump, 1)
    cells = [" "] * width
    if ix.ref_offset:
        cells[width - ix.ref_stack] = "<" if ix.ref_offset < 0 else ">"
    return "".join(cells)


def format_code(code: Code) -> list[str]:
    """Render a Code as plain text lines."""
    out = [f"== {code.name}" + (f"  ({code.file})" if code.file else "")]
    if code.error:
        return out

    for i, ix in enumerate(code.insts):
        if not ix.text:
            out.append("")
            continue
        row = f"{lane_marker(code, i)} {ix.pc:#08x}  {ix.text:<40}"
        if ix.ref_offset:
            row += f" -> [{i + ix.ref_offset}]"
        if ix.call:
            row += f" call {ix.call}"
        if ix.file:
            row += f"  {ix.file}:{ix.line}"
        out.append(f"[{i:4}] {row.rstrip()}")

    for src in code.sources:
        out.append(f"-- {src.file}")
        for block in src.blocks:
            for k, text in enumerate(block.lines):
                related = block.related[k] if k < len(block.related) else ()
                out.append(f"{block.range.start + k:5} {format_ranges(related):>12} | {text}")
            out.append("")
    return out


def format_ranges(ranges) -> str:
    """``[(3, 6), (9, 10)]`` -> ``3-5,9``"""
    return ",".join(f"{r.start}-{r.end - 1}" if r.end - r.start > 1 else str(r.start) for r in ranges)


def main(argv=None):
    """Open the object, dump the matching funcs, close it."""
    args = parse_args(argv)
    if args.context < 0:
        print("[!] --context must be non-negative", file=sys.stderr)
        return 1
    if args.filter:
        try:
            re.compile(args.filter)
        except re.error as e:
            print(f"[!] invalid filter {args.filter!r}: {e}", file=sys.stderr)
            return 1

    try:
        with yaspin(text=f"[~] opening {args.object}", color="cyan"):
            obj = open_object(args.object)
    except ObjectError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1

    try:
        funcs, more = filter_funcs(obj.funcs(), args.filter, args.max_matches)
        if args.list:
            for fn in funcs:
                print(fn.name)
        else:
            opts = Options(context=args.context)
            for fn in funcs:
                print("\n".join(format_code(fn.load(opts))))
        if more:
            print(f"[-] more than {args.max_matches} funcs match, showing the first ones", file=sys.stderr)
        if not funcs:
            print("[-] no funcs matched", file=sys.stderr)
    finally:
        obj.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
