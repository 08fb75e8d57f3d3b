"""Translation of store engine failures into bridge exceptions.

Every call into the store engine must be bracketed by `begin` and `flush`,
most conveniently by running it inside `error_context()`:

```python
with error_context():
    handle = engine.dat_find(parent, "DATA_ARRAY")
```

On failure the engine leaves one or more frames on its error stack and raises
`StatusError`. The context drains all frames of its level into one message
(oldest frame first, one line each) and raises the exception class the status
maps to. Afterwards no frame is left on the stack.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Type

from typing_extensions import Final

from ..errors import (
    HDSError,
    InvalidHandleError,
    InvalidOperationError,
    NotFoundError,
    RangeError,
    StoreError,
    StoreIOError,
)
from ..store import errstack
from ..store.errstack import Status, StatusError

logger = logging.getLogger(__name__)

CATEGORIES: Final[Dict[Status, Type[HDSError]]] = {
    Status.FILE_NOT_FOUND: StoreIOError,
    Status.IO_ERROR: StoreIOError,
    Status.OBJECT_NOT_FOUND: NotFoundError,
    Status.LOCATOR_INVALID: InvalidHandleError,
    Status.SUBSCRIPT_INVALID: RangeError,
    Status.NOT_PRIMITIVE: InvalidOperationError,
}
"""Exception classes for statuses that are not plain `StoreError`s."""


def category(status: Status) -> Type[HDSError]:
    """Return exception class for a non-OK status."""
    return CATEGORIES.get(status, StoreError)


def begin() -> None:
    """Open a fresh drain point on the engine error stack."""
    errstack.mark()


def flush(status: Optional[Status] = None) -> None:
    """Close the drain point opened by the matching `begin`.

    If no error is pending, nothing happens. Otherwise all pending frames are
    composed into one message and the categorized exception is raised.

    Args:
        status: status to categorize by, defaults to the most recently reported one.
    """
    if status is None:
        status = errstack.status()
    if status == Status.OK:
        errstack.release()
        return

    messages = []
    while (frame := errstack.load()) is not None:
        messages.append(frame.message)
    errstack.release()

    msg = "\n".join(messages) or status.name
    logger.debug("store error %s: %s", status.name, msg.replace("\n", " | "))
    raise category(status)(msg, status=int(status))


@contextmanager
def error_context() -> Iterator[None]:
    """Run engine calls with a drain point that is always flushed."""
    begin()
    try:
        yield
    except StatusError as e:
        flush(e.status)
        raise  # not reachable, flush raises for every non-OK status
    except BaseException:
        errstack.release()
        raise
    else:
        flush()
