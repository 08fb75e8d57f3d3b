"""N-dimensional data format (NDF) objects on top of `hdsbridge.hds`.

```python
from hdsbridge import ndf

with ndf.open("image", stat="NEW").new("_REAL", [1, 1], [100, 200]) as img:
    region = img.map("DATA", "_REAL", "WRITE")
    region.data[:] = 1.0
    img.unmap("DATA")
```
"""
from .mapping import MappedRegion, map, unmap
from .navigation import translate_axis, xloc, xname, xnew, xnumb, xstat
from .ndf import NDF, Placeholder, getbadpixval, open

__all__ = [
    "MappedRegion",
    "NDF",
    "Placeholder",
    "getbadpixval",
    "map",
    "open",
    "translate_axis",
    "unmap",
    "xloc",
    "xname",
    "xnew",
    "xnumb",
    "xstat",
]
