"""Test the engine error stack."""
import pytest

from hdsbridge.store import errstack
from hdsbridge.store.errstack import Status, StatusError


def test_report_and_drain_in_order():
    errstack.mark()
    errstack.report("A", "first", Status.OBJECT_NOT_FOUND)
    errstack.report("B", "second", Status.ERROR)
    assert errstack.status() == Status.ERROR
    assert errstack.pending() == 2

    assert errstack.load().message == "first"
    assert errstack.load() == ("B", "second", Status.ERROR)
    assert errstack.load() is None
    assert errstack.status() == Status.OK
    errstack.release()
    assert errstack.level() == 0


def test_release_discards_leftovers():
    errstack.mark()
    errstack.report("A", "dangling", Status.ERROR)
    errstack.release()
    assert errstack.pending() == 0


def test_levels_are_separate():
    errstack.mark()
    errstack.report("OUTER", "outer", Status.ERROR)
    errstack.mark()
    assert errstack.level() == 2
    assert errstack.status() == Status.OK  # inner level is empty
    errstack.release()
    assert errstack.load().param == "OUTER"
    errstack.release()


def test_fail():
    errstack.mark()
    err = errstack.fail("P", "msg", Status.DIMS_INVALID)
    assert isinstance(err, StatusError)
    assert err.status == Status.DIMS_INVALID
    assert errstack.pending() == 1
    errstack.release()


def test_report_ok_rejected():
    with pytest.raises(ValueError):
        errstack.report("P", "msg", Status.OK)
