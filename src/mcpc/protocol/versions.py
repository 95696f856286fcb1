"""Protocol version ranges and negotiation.

MCP versions are date strings (``"2025-06-18"``) that order lexically, so a
range is just a ``(minimum, maximum)`` pair of comparable values.  Integer
versions work the same way, but a range never mixes strings and integers.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from mcpc.errors import VersionMismatchError

SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = ("2024-11-05", "2025-03-26", "2025-06-18")


@dataclass(frozen=True)
class VersionRange:
    """Inclusive range of protocol versions."""

    minimum: Any
    maximum: Any

    def __post_init__(self) -> None:
        if type(self.minimum) is not type(self.maximum):
            msg = f"Mixed version types: {self.minimum!r}, {self.maximum!r}"
            raise ValueError(msg)
        if self.minimum > self.maximum:
            msg = f"Empty version range: {self.minimum} > {self.maximum}"
            raise ValueError(msg)

    @classmethod
    def of(cls, versions: Iterable[Any]) -> VersionRange:
        """Build the range spanned by *versions*."""
        values = list(versions)
        if not values:
            msg = "At least one protocol version is required"
            raise ValueError(msg)
        if len({type(v) for v in values}) > 1:
            msg = f"Mixed version types: {values!r}"
            raise ValueError(msg)
        ordered = sorted(values)
        return cls(ordered[0], ordered[-1])

    def __contains__(self, version: Any) -> bool:
        if type(version) is not type(self.minimum):
            return False
        return self.minimum <= version <= self.maximum

    def __str__(self) -> str:
        return f"[{self.minimum}, {self.maximum}]"


def negotiate_version(client: VersionRange, server: VersionRange) -> Any:
    """Return the highest version both sides support.

    Raises:
        VersionMismatchError: If the ranges do not overlap or use different
            version types.
    """
    if type(client.maximum) is not type(server.maximum):
        raise VersionMismatchError(str(client), str(server))
    candidate = min(client.maximum, server.maximum)
    if candidate < max(client.minimum, server.minimum):
        raise VersionMismatchError(str(client), str(server))
    return candidate
