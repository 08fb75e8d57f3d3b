from pathlib import Path

import numpy as np
import typer
from rich import print
from rich.markup import escape
from rich.tree import Tree

from hdsbridge import hds
from hdsbridge.errors import HDSError
from hdsbridge.hds import Locator

MAX_VALUES = 8
"""Number of array elements shown unless all are requested."""


def _fmt(x) -> str:
    if isinstance(x, bytes):
        return repr(x.decode("ascii", errors="replace").rstrip())
    return str(x)


def _value(loc: Locator, full: bool) -> str:
    if not loc.state():
        return "<undefined>"
    v = loc.get()
    if np.ndim(v) == 0:
        return _fmt(v.item() if isinstance(v, np.generic) else v)
    flat = v.reshape(-1)
    shown = flat if full else flat[:MAX_VALUES]
    ret = ", ".join(_fmt(x.item()) for x in shown)
    return ret + (", ..." if len(shown) < len(flat) else "")


def _describe(loc: Locator, full: bool) -> str:
    shape = loc.shape()
    dims = "" if shape is None else f"[{','.join(map(str, shape))}]"
    text = f"[b]{escape(loc.name())}[/b]{escape(dims)} <{loc.type()}>"
    if not loc.struc():
        text += f" {escape(_value(loc, full))}"
    return text


def _walk(loc: Locator, tree: Tree, full: bool):
    if not loc.struc():
        return
    shape = loc.shape()
    if shape is not None:  # array of structures
        for idx in np.ndindex(*shape):
            with loc.cell(list(idx)) as cell:
                _walk(cell, tree.add(_describe(cell, full)), full)
        return
    for i in range(loc.ncomp()):
        with loc.index(i) as comp:
            _walk(comp, tree.add(_describe(comp, full)), full)


def trace(
    path: Path = typer.Argument(..., help="Store file to show."),
    full: bool = typer.Option(False, "--full", help="Show all elements of arrays."),
):
    """Show the objects in a store as a tree."""
    try:
        with hds.scope():
            root = hds.open(path)
            tree = Tree(_describe(root, full))
            _walk(root, tree, full)
    except HDSError as e:
        print(f"[b][red]Error:[/red][/b] {escape(str(e))}")
        raise typer.Exit(1)
    print(tree)
