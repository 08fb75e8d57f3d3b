"""Test the command line interface."""
import numpy as np
from typer.testing import CliRunner

from hdsbridge import __version__, hds
from hdsbridge.cli import app

runner = CliRunner()


def test_self_info():
    result = runner.invoke(app, ["self", "info"])
    assert result.exit_code == 0
    assert __version__ in result.stdout
    assert "h5py" in result.stdout


def test_trace(tmp_ds_path):
    with hds.new(tmp_ds_path, "TRACED", "STRUCT") as root:
        root.new("N", "_INTEGER")
        with root.find("N") as loc:
            loc.put("_INTEGER", [], 42)
        root.new("BIG", "_DOUBLE", [100])
        with root.find("BIG") as loc:
            loc.put("_DOUBLE", [100], np.arange(100, dtype=np.float64))
        root.new("EMPTY", "_REAL", [2])
        root.new("CELLS", "PAIR", [2])
        with root.find("CELLS") as cells:
            with cells.cell([1]) as cell:
                cell.new("NAME", "_CHAR*5")
                with cell.find("NAME") as name:
                    name.putc("two")

    result = runner.invoke(app, ["trace", str(tmp_ds_path)])
    assert result.exit_code == 0, result.stdout
    out = result.stdout
    assert "TRACED" in out
    assert "42" in out
    assert "<undefined>" in out
    assert "CELLS(2)" in out
    assert "'two'" in out
    assert "..." in out

    full = runner.invoke(app, ["trace", "--full", str(tmp_ds_path)])
    assert "99.0" in full.stdout


def test_trace_missing_file(tmp_ds_path):
    result = runner.invoke(app, ["--verbose", "trace", str(tmp_ds_path)])
    assert result.exit_code == 1
    assert "Error" in result.stdout
