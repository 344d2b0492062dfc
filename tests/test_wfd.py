import logging

import pytest

from miraclectl import wfd


def test_cea_lowest_bit():
    assert wfd.get_cea_resolution(1) == (640, 480)
    assert wfd.get_cea_resolution((1 << 5) | (1 << 7)) == (1280, 720)


def test_vesa_and_hh_lookup():
    assert wfd.get_vesa_resolution(1 << 28) == (1920, 1200)
    assert wfd.get_hh_resolution(1 << 11) == (848, 480)


@pytest.mark.parametrize(
    "func", [wfd.get_cea_resolution, wfd.get_vesa_resolution, wfd.get_hh_resolution]
)
def test_empty_mask_rejected(func):
    with pytest.raises(ValueError):
        func(0)


def test_mask_outside_table_rejected():
    with pytest.raises(ValueError):
        wfd.get_cea_resolution(1 << 20)
    with pytest.raises(ValueError):
        wfd.get_hh_resolution(1 << 12)


def test_generate_mask_matches_default_masks():
    assert wfd.generate_resolution_mask(16) == 0x0001FFFF
    assert wfd.generate_resolution_mask(28) == 0x1FFFFFFF
    assert wfd.generate_resolution_mask(12) == 0x00001FFF
    assert wfd.generate_resolution_mask(0) == 1


def test_format_resolutions_structure():
    text = wfd.format_resolutions("")
    lines = text.splitlines()
    expected = 3 + len(wfd.RESOLUTIONS_CEA) + len(wfd.RESOLUTIONS_VESA) + len(wfd.RESOLUTIONS_HH)
    assert len(lines) == expected
    assert lines[0] == "CEA resolutions:"
    assert lines[1] == "\t 0 00000001  640x 480@60"
    assert "VESA resolutions:" in lines
    assert "HH resolutions:" in lines


def test_format_resolutions_prefix():
    text = wfd.format_resolutions("# ")
    assert all(line.startswith("# ") for line in text.splitlines())


def test_print_resolutions(capsys):
    wfd.print_resolutions("")
    assert capsys.readouterr().out == wfd.format_resolutions("")


def test_dump_resolutions_empty():
    assert wfd.dump_resolutions(0, 0, 0) == []


def test_dump_resolutions_selects(caplog):
    with caplog.at_level(logging.DEBUG, logger="miraclectl.wfd"):
        lines = wfd.dump_resolutions(1, 0, 1 << 3)
    assert lines[0] == "CEA resolutions:"
    assert "HH resolutions:" in lines
    assert len(lines) == 4
    assert len(caplog.records) == len(lines)