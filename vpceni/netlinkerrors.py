"""Classification of netlink errors that route management may ignore."""

from __future__ import annotations

import errno


def _has_errno(err: BaseException, code: int) -> bool:
    return isinstance(err, OSError) and err.errno == code


def is_not_exists_error(err: BaseException) -> bool:
    """True if err means the object to remove is already gone (ESRCH)."""
    return _has_errno(err, errno.ESRCH)


def is_route_exists_error(err: BaseException) -> bool:
    """True if err means the route to add is already present (EEXIST)."""
    return _has_errno(err, errno.EEXIST)


def is_network_unreachable_error(err: BaseException) -> bool:
    """True if err means a route the call depends on is not set up yet (ENETUNREACH)."""
    return _has_errno(err, errno.ENETUNREACH)