"""Parsers for sysctl values, /proc/net/sockstat, ss skmem output and sysctl.conf dumps.

Every function here is pure: text in, typed values out. Malformed input
raises ``ValueError`` so callers can tell it apart from a missing source.
"""

from __future__ import annotations

import re

from netbuf.models.enums import ParamKind
from netbuf.models.runtime import ConnectionBuffer, Triple, Value

# skmem:(r0,rb131072,t0,tb87040,f0,w0,o0,bl0,d0)
_SKMEM_RE = re.compile(r"skmem:\(([^)]*)\)")
_SKMEM_FIELD_RE = re.compile(r"^([a-z_]+)(\d+)$")

# sysctl.conf / `sysctl -a`: net.core.rmem_max = 212992
_SYSCTL_LINE_RE = re.compile(r"^\s*([A-Za-z0-9_./-]+)\s*=\s*(.*?)\s*$")


def parse_scalar(raw: str) -> int:
    """Parse a single-integer sysctl value."""
    parts = raw.split()
    if len(parts) != 1:
        raise ValueError(f"expected one integer, got {raw!r}")
    return int(parts[0])


def parse_triple(raw: str) -> Triple:
    """Parse a whitespace-separated min/default/max sysctl value."""
    parts = raw.split()
    if len(parts) != 3:
        raise ValueError(f"expected three integers, got {raw!r}")
    a, b, c = (int(p) for p in parts)
    return Triple(a, b, c)


def parse_value(raw: str, kind: ParamKind) -> Value:
    if kind == ParamKind.TRIPLE:
        return parse_triple(raw)
    return parse_scalar(raw)


def parse_sockstat(text: str) -> dict[str, int]:
    """Parse /proc/net/sockstat into ``{"tcp.inuse": 5, "tcp.mem": 3, ...}``.

    Example line: ``TCP: inuse 5 orphan 0 tw 2 alloc 7 mem 3``
    """
    out: dict[str, int] = {}
    for line in text.splitlines():
        if ":" not in line:
            continue
        proto, _, rest = line.partition(":")
        tokens = rest.split()
        if len(tokens) % 2 != 0:
            raise ValueError(f"odd number of fields in sockstat line {line!r}")
        prefix = proto.strip().lower()
        for key, val in zip(tokens[::2], tokens[1::2]):
            out[f"{prefix}.{key}"] = int(val)
    return out


def _parse_skmem(fields: str) -> dict[str, int]:
    out: dict[str, int] = {}
    for item in fields.split(","):
        m = _SKMEM_FIELD_RE.match(item.strip())
        if m:
            out[m.group(1)] = int(m.group(2))
    return out


def _socket_endpoints(tokens: list[str]) -> tuple[str, str] | None:
    """Pick local/peer addresses from an ss socket line.

    With a state filter ss omits the State column, so Recv-Q comes first.
    """
    if not tokens:
        return None
    if tokens[0].isdigit():
        idx = 2
    else:
        idx = 3
    if len(tokens) < idx + 2:
        return None
    return tokens[idx], tokens[idx + 1]


def parse_ss_skmem(text: str) -> list[ConnectionBuffer]:
    """Parse ``ss -tmn`` output into per-connection buffer occupancy.

    The skmem block is usually on an indented continuation line but some ss
    builds print it on the socket line itself; both are handled. Sockets
    without a skmem block are dropped.
    """
    results: list[ConnectionBuffer] = []
    endpoints: tuple[str, str] | None = None

    for line in text.splitlines():
        if not line.strip():
            continue
        stripped = line.strip()
        if stripped.startswith(("State", "Recv-Q", "Netid")):
            continue

        skmem = _SKMEM_RE.search(line)
        if not line[0].isspace():
            head = line[: skmem.start()] if skmem else line
            endpoints = _socket_endpoints(head.split())

        if skmem is None or endpoints is None:
            continue

        mem = _parse_skmem(skmem.group(1))
        if "r" not in mem or "rb" not in mem:
            raise ValueError(f"skmem block missing r/rb: {skmem.group(0)!r}")
        results.append(
            ConnectionBuffer(
                local=endpoints[0],
                peer=endpoints[1],
                rmem_alloc=mem["r"],
                rcvbuf=mem["rb"],
                wmem_alloc=mem.get("t", 0),
                sndbuf=mem.get("tb", 0),
            )
        )
        endpoints = None

    return results


def parse_sysctl_conf(text: str) -> list[tuple[str, str]]:
    """Parse sysctl.conf or ``sysctl -a`` text into ordered (name, value) pairs.

    Whitespace inside values (tabs between triple components) is normalised
    to single spaces.
    """
    pairs: list[tuple[str, str]] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", ";")):
            continue
        m = _SYSCTL_LINE_RE.match(stripped)
        if not m:
            raise ValueError(f"not a sysctl assignment: {line!r}")
        pairs.append((m.group(1), " ".join(m.group(2).split())))
    return pairs


def format_sysctl_conf(pairs: list[tuple[str, str]], header: str = "") -> str:
    """Render (name, value) pairs in sysctl.conf syntax."""
    lines = [f"# {h}" if h else "#" for h in header.splitlines()] if header else []
    lines.extend(f"{name} = {value}" for name, value in pairs)
    return "\n".join(lines) + "\n"


def proc_sys_path(name: str) -> str:
    """Map a dotted sysctl name to its /proc/sys path."""
    return "/proc/sys/" + name.replace(".", "/")
