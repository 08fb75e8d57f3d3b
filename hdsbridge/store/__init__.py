"""HDS-like store engine on top of HDF5.

Use it through `hdsbridge.hds`, which translates its error stack into exceptions.
"""
