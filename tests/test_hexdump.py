import pytest

from kcsdk.hexdump import hexdump


def test_partial_line_is_padded():
    expected = "0x000000: 41 42 43 " + " " * 15 + "ABC" + " " * 5 + "\n"
    assert hexdump(b"ABC") == expected


def test_empty_input():
    assert hexdump(b"") == ""


def test_full_lines_and_offsets():
    out = hexdump(bytes(range(0x41, 0x51)))
    lines = out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("0x000000: ")
    assert lines[1].startswith("0x000008: ")
    assert lines[0].endswith("ABCDEFGH")
    assert lines[1].endswith("IJKLMNOP")


def test_nonprintable_shown_as_dot():
    out = hexdump(b"\x00\x7f\x41")
    assert out.startswith("0x000000: 00 7f 41 ")
    assert out.rstrip("\n").rstrip().endswith("..A")


def test_all_lines_same_width():
    lines = hexdump(bytes(range(21))).splitlines()
    assert len(lines) == 3
    assert len({len(line) for line in lines}) == 1


def test_custom_column_count():
    lines = hexdump(b"abcdefgh", cols=4).splitlines()
    assert lines == ["0x000000: 61 62 63 64 abcd", "0x000004: 65 66 67 68 efgh"]


def test_invalid_cols():
    with pytest.raises(ValueError):
        hexdump(b"x", cols=0)