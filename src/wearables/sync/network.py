"""Network classification used to gate background sync."""

from __future__ import annotations

import enum
from typing import Awaitable, Callable, Union


class NetworkClass(str, enum.Enum):
    UNMETERED = "unmetered"
    METERED = "metered"
    OFFLINE = "offline"


# A probe returns the current class, synchronously or as a coroutine.
NetworkProbe = Callable[[], Union[NetworkClass, Awaitable[NetworkClass]]]


def static_probe(value: NetworkClass) -> NetworkProbe:
    """Probe that always reports ``value``.  Used for server deployments and tests."""

    def probe() -> NetworkClass:
        return value

    return probe
