import pytest
from srclens.arch import Arch
from srclens.common import Code, DecodeError, LineRange, Options, RawInst
from srclens.disasm import Disassembler, find_ref, load_code, strip_traps

ARCH = Arch("test", stride=4, traps=("int3",))


def raw(pc, text, file="", line=0, **kw):
    return RawInst(pc=pc, size=4, file=file, line=line, text=text, **kw)


def check_bounds(insts):
    for i, ix in enumerate(insts):
        if ix.ref_offset:
            assert 0 <= i + ix.ref_offset < len(insts)
            assert insts[i + ix.ref_offset].pc == ix.ref_pc


@pytest.mark.parametrize("text,pc,expected", [
    ("jne 0x401136", 0, 0x401136),
    ("b.ne #0x4004d0", 0, 0x4004d0),
    ("JMP 0x1f", 0, 0x1f),
    ("BNE -2(PC)", 0x18, 0x10),
    ("B 3(PC)", 0x18, 0x24),
    ("mov qword ptr [rip + 0x2fe2], rax", 0, 0),
    ("call qword ptr [rip + 0x2fe2]", 0, 0),
    ("ret", 0, 0),
])
def test_find_ref(text, pc, expected):
    assert find_ref(text, pc, stride=4) == expected


def test_strip_traps_only_trailing():
    raws = [raw(0, "int3"), raw(4, "ret"), raw(8, "int3"), raw(12, "INT3")]
    assert [r.pc for r in strip_traps(raws, ARCH)] == [0, 4]


def test_nested_jumps():
    raws = [
        raw(0x10, "nop"),
        raw(0x14, "jmp 0x20"),
        raw(0x18, "jne 0x1c"),
        raw(0x1c, "nop"),
        raw(0x20, "ret"),
    ]
    insts, max_jump = Disassembler(ARCH).resolve(raws)

    assert max_jump == 3
    assert len(insts) >= len(raws)
    check_bounds(insts)

    outer = next(ix for ix in insts if ix.pc == 0x14)
    inner = next(ix for ix in insts if ix.pc == 0x18)
    assert outer.ref_stack != inner.ref_stack
    assert {outer.ref_stack, inner.ref_stack} == {2, 3}


def test_disjoint_jumps_share_lane():
    raws = [
        raw(0x10, "nop"),
        raw(0x14, "jmp 0x18"),
        raw(0x18, "nop"),
        raw(0x1c, "jmp 0x20"),
        raw(0x20, "ret"),
    ]
    insts, max_jump = Disassembler(ARCH).resolve(raws)

    assert max_jump == 2
    check_bounds(insts)
    jumps = [ix for ix in insts if ix.ref_offset]
    assert len(jumps) == 2
    assert jumps[0].ref_stack == jumps[1].ref_stack == 2


def test_placeholder_before_each_target():
    raws = [raw(0x10, "nop"), raw(0x14, "jmp 0x10"), raw(0x18, "ret")]
    insts, _ = Disassembler(ARCH).resolve(raws)

    assert [ix.pc for ix in insts] == [0, 0x10, 0x14, 0x18]
    assert insts[0].text == ""
    assert insts[2].ref_offset == -1


def test_dangling_reference_is_not_drawn():
    raws = [raw(0x10, "jmp 0x999"), raw(0x14, "ret")]
    insts, max_jump = Disassembler(ARCH).resolve(raws)

    assert len(insts) == 2
    assert insts[0].ref_pc == 0x999
    assert insts[0].ref_offset == 0
    assert insts[0].ref_stack == 0
    assert max_jump == 1


def test_reference_into_stripped_trap_dangles():
    raws = [raw(0x10, "jmp 0x18"), raw(0x14, "ret"), raw(0x18, "int3")]
    insts, max_jump = Disassembler(ARCH).resolve(raws)

    assert [ix.pc for ix in insts] == [0x10, 0x14]
    assert insts[0].ref_offset == 0
    assert max_jump == 1


def test_relative_reference_uses_stride():
    raws = [raw(0x10, "NOP"), raw(0x14, "NOP"), raw(0x18, "BNE -2(PC)")]
    insts, _ = Disassembler(ARCH).resolve(raws)

    last = insts[-1]
    assert last.ref_pc == 0x10
    assert insts[len(insts) - 1 + last.ref_offset].pc == 0x10


def test_explicit_reference_wins_over_text():
    raws = [raw(0x10, "br 0", ref=0x18), raw(0x14, "nop"), raw(0x18, "end")]
    insts, _ = Disassembler(ARCH).resolve(raws)

    assert insts[0].ref_pc == 0x18
    check_bounds(insts)


def test_call_to_other_func_is_named():
    funcs = {0x500: "pkg.helper"}
    raws = [raw(0x10, "call 0x500"), raw(0x14, "call 0x600"), raw(0x18, "ret")]
    insts, max_jump = Disassembler(ARCH, funcs.get).resolve(raws)

    assert insts[0].call == "pkg.helper"
    assert insts[0].ref_offset == 0
    assert insts[1].call == ""
    assert max_jump == 1


def test_decoder_supplied_call_is_kept():
    insts, _ = Disassembler(ARCH).resolve([raw(0, "call env.log", call="env.log")])
    assert insts[0].call == "env.log"


def write_source(path, n=10):
    lines = [f"line{i}" for i in range(1, n + 1)]
    lines[2] = "\tindented"
    path.write_text("\n".join(lines) + "\n")
    return str(path)


def test_build_links_source_lines(tmp_path):
    src = write_source(tmp_path / "main.c")
    raws = [raw(0x10, "push", src, 3), raw(0x14, "mov", src, 3), raw(0x18, "ret", src, 5)]
    code = Disassembler(ARCH).build("main", src, raws, Options(context=1))

    assert code.name == "main"
    assert code.file == src
    assert len(code.sources) == 1
    (block,) = code.sources[0].blocks
    assert block.range == LineRange(2, 7)
    assert block.lines == ("line2", "    indented", "line4", "line5", "line6")
    assert block.related == ((), ((0, 2),), (), ((2, 3),), ())


def test_build_clamps_to_file_length(tmp_path):
    src = write_source(tmp_path / "short.c", n=4)
    code = Disassembler(ARCH).build("f", src, [raw(0x10, "ret", src, 4)], Options(context=3))

    (block,) = code.sources[0].blocks
    assert block.range == LineRange(1, 5)
    assert len(block.lines) == len(block.related) == 4


def test_build_orders_primary_file_first(tmp_path):
    files = [write_source(tmp_path / name) for name in ("z.c", "a.c", "b.c")]
    raws = [raw(0x10 + 4 * i, "nop", f, 1) for i, f in enumerate(files)]
    code = Disassembler(ARCH).build("f", files[0], raws, Options(context=0))

    assert [s.file for s in code.sources] == [files[0], files[1], files[2]]


def test_missing_source_is_skipped(tmp_path, capsys):
    src = write_source(tmp_path / "ok.c")
    gone = str(tmp_path / "gone.c")
    raws = [raw(0x10, "nop", gone, 1), raw(0x14, "jmp 0x10", src, 2), raw(0x18, "ret", src, 3)]
    code = Disassembler(ARCH).build("f", gone, raws, Options(context=0))

    assert [s.file for s in code.sources] == [src]
    assert [ix.pc for ix in code.insts if ix.text] == [0x10, 0x14, 0x18]
    assert "gone.c" in capsys.readouterr().err


def test_load_code_reports_decode_errors(capsys):
    def decode():
        raise DecodeError("bad opcode")

    code = load_code("broken", decode, Disassembler(ARCH), Options())
    assert isinstance(code, Code)
    assert "bad opcode" in code.name
    assert code.error
    assert code.insts == ()
    assert "bad opcode" in capsys.readouterr().err


def test_load_code_picks_first_file_as_primary(tmp_path):
    src = write_source(tmp_path / "f.c")
    raws = [raw(0x10, "nop"), raw(0x14, "ret", src, 2)]
    code = load_code("f", lambda: raws, Disassembler(ARCH), Options(context=0))
    assert code.file == src
