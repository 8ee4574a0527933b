"""Tests for namespace marker files."""

import os

import pytest

from nsshare.errors import MarkerError
from nsshare.namespace.marker import read_marker, remove_marker, write_marker


def test_should_write_decimal_pid(tmp_path):
    marker = str(tmp_path / "local" / ".alpine-ns-pid")

    write_marker(marker, 500)

    with open(marker) as _file:
        assert _file.read() == "500\n"
    assert read_marker(marker) == 500


def test_should_fail_when_marker_is_missing(tmp_path):
    with pytest.raises(MarkerError, match="Cannot read marker"):
        read_marker(str(tmp_path / "missing"))


def test_should_fail_when_marker_is_corrupt(tmp_path):
    marker = tmp_path / "marker"
    marker.write_text("garbage")

    with pytest.raises(MarkerError, match="Corrupt marker"):
        read_marker(str(marker))


def test_should_fail_when_marker_holds_non_positive_pid(tmp_path):
    marker = tmp_path / "marker"
    marker.write_text("0\n")

    with pytest.raises(MarkerError, match="Invalid PID"):
        read_marker(str(marker))


def test_should_remove_marker_once(tmp_path):
    marker = str(tmp_path / "marker")
    write_marker(marker, 1)

    assert remove_marker(marker) is True
    assert not os.path.exists(marker)
    assert remove_marker(marker) is False
