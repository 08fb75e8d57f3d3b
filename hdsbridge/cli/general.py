import platform

import h5py
import numpy as np
import typer
from rich import print

from hdsbridge import __version__

app = typer.Typer()


@app.command("info")
def info():
    """Show information about the system and Python environment."""
    un = platform.uname()
    print(f"[b]System:[/b] {un.system} {un.release} {un.version}")
    print(
        f"[b]Python:[/b] {platform.python_version()} ({platform.python_implementation()})"
    )
    print("[b]Env:[/b]")
    print("hdsbridge", __version__)
    print("h5py", h5py.version.version, f"(HDF5 {h5py.version.hdf5_version})")
    print("numpy", np.__version__)
