from srclens.common import LineRange
from srclens.lineset import LineSet
from srclens.sources import load_sources, read_lines, slice_block


def test_read_lines_expands_tabs(tmp_path):
    path = tmp_path / "a.go"
    path.write_text("func f() {\n\treturn\n}\n")
    assert read_lines(str(path)) == ["func f() {", "    return", "}"]


def test_slice_block_past_end_of_file():
    assert slice_block(["a", "b"], LineRange(5, 8)) is None


def test_slice_block_is_clamped():
    block = slice_block(["a", "b", "c"], LineRange(2, 10))
    assert block.range == LineRange(2, 4)
    assert block.lines == ("b", "c")


def test_load_sources_reads_each_window(tmp_path):
    path = tmp_path / "m.c"
    path.write_text("\n".join(f"{i}" for i in range(1, 41)))
    sources = load_sources({str(path): LineSet([3, 30])}, str(path), 1)

    (src,) = sources
    assert [b.range for b in src.blocks] == [(2, 5), (29, 32)]
    assert src.blocks[1].lines == ("29", "30", "31")


def test_load_sources_skips_unreadable(tmp_path, capsys):
    ok = tmp_path / "ok.c"
    ok.write_text("x\n")
    sources = load_sources({str(tmp_path / "nope.c"): LineSet([1]), str(ok): LineSet([1])}, "", 0)

    assert [s.file for s in sources] == [str(ok)]
    assert "[!]" in capsys.readouterr().err
