"""Address arithmetic on a canonical 16-byte representation.

IPv4 addresses are mapped into ``::ffff:0:0/96`` so both families share a
single comparison and increment routine.
"""

from collections.abc import Iterator
import ipaddress

from labplatform.errors import InvalidInputError

CANONICAL_WIDTH = 16
_V4_MAPPED_PREFIX = bytes(10) + b"\xff\xff"


def parse_address(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError as e:
        raise InvalidInputError(f"invalid IP address: {value!r}") from e


def parse_network(value: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    try:
        return ipaddress.ip_network(value.strip(), strict=False)
    except ValueError as e:
        raise InvalidInputError(f"invalid CIDR: {value!r}") from e


def to_canonical(value: str) -> bytes:
    """Return the 16-byte form of an address."""
    address = parse_address(value)
    if address.version == 4:
        return _V4_MAPPED_PREFIX + address.packed
    return address.packed


def from_canonical(raw: bytes) -> str:
    if len(raw) != CANONICAL_WIDTH:
        raise ValueError(f"canonical address must be {CANONICAL_WIDTH} bytes, got {len(raw)}")
    if raw[:12] == _V4_MAPPED_PREFIX:
        return str(ipaddress.IPv4Address(raw[12:]))
    return str(ipaddress.IPv6Address(raw))


def normalize(value: str) -> str:
    """Canonical textual form, so differently written IPv6 addresses compare equal."""
    return from_canonical(to_canonical(value))


def increment(raw: bytes) -> bytes:
    """Add one, propagating the carry from the least-significant byte."""
    octets = bytearray(raw)
    for i in range(len(octets) - 1, -1, -1):
        if octets[i] < 0xFF:
            octets[i] += 1
            return bytes(octets)
        octets[i] = 0
    raise OverflowError("address space exhausted")


def compare(a: bytes, b: bytes) -> int:
    """Octet-wise comparison: -1, 0 or 1."""
    for x, y in zip(a, b, strict=True):
        if x != y:
            return -1 if x < y else 1
    return 0


def range_size(start: str, end: str) -> int:
    """Number of addresses in [start, end], 0 when end < start."""
    low, high = to_canonical(start), to_canonical(end)
    if compare(low, high) > 0:
        return 0
    return int.from_bytes(high, "big") - int.from_bytes(low, "big") + 1


def iter_range(start: str, end: str) -> Iterator[str]:
    """Yield every address from start to end inclusive, in order."""
    current, last = to_canonical(start), to_canonical(end)
    while compare(current, last) <= 0:
        yield from_canonical(current)
        if current == last:
            return
        current = increment(current)


def same_family(*values: str) -> bool:
    return len({parse_address(v).version for v in values}) == 1


def in_network(value: str, cidr: str) -> bool:
    address = parse_address(value)
    network = parse_network(cidr)
    return address.version == network.version and address in network
