import secrets
from pathlib import Path

import numpy as np
import pytest

from hdsbridge import hds
from hdsbridge.store import engine, errstack


@pytest.fixture(scope="session")
def ds_dir(tmpdir_factory):
    """Create a fresh temporary directory for stores created in the tests."""
    return tmpdir_factory.mktemp("hdsbridge_tests")


@pytest.fixture
def tmp_ds_path_factory(ds_dir):
    """Return a store name generator to be used for creating stores.

    All files of all stores will be cleaned up after completing the test.
    """
    names = []

    def fresh_name() -> Path:
        name = f"s{secrets.token_hex(4)}"
        names.append(name)
        return Path(ds_dir / name)

    yield fresh_name

    # clean up
    for name in names:
        for path in Path(ds_dir).glob(f"{name}*"):
            if path.is_file():
                path.unlink()


@pytest.fixture
def tmp_ds_path(tmp_ds_path_factory):
    """Generate a store name to be used for creating a store.

    The file will be cleaned up after completing the test.
    """
    return tmp_ds_path_factory()


@pytest.fixture(autouse=True)
def clean_state():
    """Make sure no test leaks scopes, error frames or open stores into the next one."""
    yield
    while hds.depth() > 0:
        hds.end()
    assert errstack.pending() == 0
    for path in engine.open_files():
        engine._sessions.pop(path).file.close()


@pytest.fixture
def store(tmp_ds_path):
    """Return root of a writable store holding an integer, a 2x3 real array and a string.

    The root is the only valid locator into the store, all locators are annulled
    after the test.
    """
    with hds.scope():
        root = hds.new(tmp_ds_path, "TEST", "STRUCT")
        root.new("N", "_INTEGER")
        with root.find("N") as loc:
            loc.put("_INTEGER", [], 42)
        root.new("IMG", "_REAL", [2, 3])
        with root.find("IMG") as loc:
            loc.put("_REAL", [2, 3], np.arange(6, dtype=np.float32).reshape(2, 3))
        root.new("NAME", "_CHAR*8")
        with root.find("NAME") as loc:
            loc.putc("hello")
        yield root
