"""Locator-based access to hierarchical data stores.

A store holds structures with named, typed and possibly multi-dimensional
components. This package hands out `Locator`s to objects in a store and copies
primitive data between the store and numpy arrays.

**Conventions:** shapes are in caller order (as numpy arrays have them) and
indices are zero-based. Inside the store, dimensions are kept fastest-varying
first and subscripts are one-based; the translation is done by the locators.

## Getting Started

```python
from hdsbridge import hds

with hds.scope():
    root = hds.new("example", "EXAMPLE", "STRUCT")
    root.new("N", "_INTEGER")
    root.find("N").put("_INTEGER", [], 42)

    root.new("IMG", "_REAL", [2, 3])
    img = root.find("IMG")
    img.shape()  # (2, 3)
# ending the scope annulled all locators created in it
```

Errors reported by the store are raised as subclasses of `hdsbridge.errors.HDSError`.
"""
from .context import error_context
from .locator import Locator
from .locator import new_store as new
from .locator import open_store as open
from .scope import begin, depth, end, scope
from .types import TypeTag, allocate, format_type, parse_type, resolve, reverse_shape

__all__ = [
    "Locator",
    "TypeTag",
    "allocate",
    "begin",
    "depth",
    "end",
    "error_context",
    "format_type",
    "new",
    "open",
    "parse_type",
    "resolve",
    "reverse_shape",
    "scope",
]
