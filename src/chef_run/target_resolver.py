"""Expansion of target specifications into TargetHost objects.

A target specification is a comma separated list of items shaped like
``[protocol://][user[:password]@]host[:port]``. The host part may carry
one bracketed range (``web[1:3]``, ``db-[a:c]``, ``10.0.0.[1:4]``) or be a
CIDR network (``10.0.0.0/30``). Resolution never touches the network.

Example:
    >>> hosts = resolve("deploy@web[1:2]:2222,local://localhost", RunConfig())
    >>> [(h.protocol, h.hostname, h.port) for h in hosts]
    [('ssh', 'web1', 2222), ('ssh', 'web2', 2222), ('local', 'localhost', None)]
"""

import ipaddress
import logging
import re
import string

from .backends import SUPPORTED_PROTOCOLS
from .config import RunConfig
from .exceptions import InvalidRange, ResolutionError, TooManyTargets, UnsupportedTargetProtocol
from .target_host import TargetHost

logger = logging.getLogger(__name__)

MAX_EXPANDED_TARGETS = 24

RANGE_RE = re.compile(r"\[([^\]]*)\]")
PORT_RE = re.compile(r"^(?P<host>.*[^:]):(?P<port>\d+)$")
PROTOCOL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")


class TargetResolver:
    """Resolve one target specification against run configuration.

    Credentials written into the specification take precedence over the
    connection defaults in ``config``.
    """

    def __init__(self, spec: str, config: RunConfig, max_targets: int = MAX_EXPANDED_TARGETS):
        self.spec = spec or ""
        self.config = config
        self.max_targets = max_targets

    def targets(self) -> list[TargetHost]:
        """Return the resolved targets in the order written.

        Raises:
            ResolutionError: If the specification is empty or malformed
            UnsupportedTargetProtocol: If an item names an unknown protocol
            InvalidRange: If a bracketed range cannot be expanded
            TooManyTargets: If the expansion exceeds ``max_targets``
        """
        items = [item.strip() for item in self.spec.split(",")]
        items = [item for item in items if item]
        if not items:
            raise ResolutionError("No targets were specified")

        parsed = [self._parse_item(item) for item in items]

        total = sum(len(hosts) for _, hosts in parsed)
        if total > self.max_targets:
            raise TooManyTargets(total, self.max_targets)

        seen = set()
        resolved = []
        for fields, hosts in parsed:
            for hostname in hosts:
                target = self._make_host(hostname, fields)
                key = (target.protocol, target.user, target.hostname, target.port)
                if key in seen:
                    logger.debug("Skipping duplicate target %s", hostname)
                    continue
                seen.add(key)
                resolved.append(target)

        label_shared_hostnames(resolved)

        logger.debug("Resolved %r to %d target(s)", self.spec, len(resolved))
        return resolved

    def _parse_item(self, item: str) -> tuple[dict, list[str]]:
        protocol = self.config.connection.default_protocol
        rest = item
        if "://" in rest:
            protocol, rest = rest.split("://", 1)
            if not PROTOCOL_RE.match(protocol):
                raise ResolutionError(f"Malformed protocol in target '{item}'")
        protocol = protocol.lower()
        if protocol not in SUPPORTED_PROTOCOLS:
            raise UnsupportedTargetProtocol(protocol, list(SUPPORTED_PROTOCOLS))

        user = password = None
        if "@" in rest:
            credentials, _, rest = rest.rpartition("@")
            user, _, pw = credentials.partition(":")
            password = pw if pw else None
            if not user:
                raise ResolutionError(f"Empty user name in target '{item}'")

        host, port = split_port(rest)
        if not host:
            raise ResolutionError(f"No host in target '{item}'")

        fields = {"protocol": protocol, "user": user, "password": password, "port": port}
        return fields, expand_host(host)

    def _make_host(self, hostname: str, fields: dict) -> TargetHost:
        conn = self.config.connection
        return TargetHost(
            hostname,
            protocol=fields["protocol"],
            user=fields["user"] or conn.default_user,
            password=fields["password"] or conn.password,
            port=fields["port"] or conn.port,
            identity_files=conn.identity_files,
            sudo=conn.sudo,
            connect_timeout=conn.connect_timeout,
            host_key_checking=conn.host_key_checking,
        )


def label_shared_hostnames(targets: list[TargetHost]) -> None:
    """Give targets that share a hostname distinct names.

    Targets reached under one hostname with different users, ports or
    protocols are named ``[protocol://][user@]host[:port]`` so that their
    progress lines and failures can be told apart.
    """
    counts: dict[str, int] = {}
    for target in targets:
        counts[target.hostname] = counts.get(target.hostname, 0) + 1
    for target in targets:
        if counts[target.hostname] < 2:
            continue
        label = target.hostname
        if target.user:
            label = f"{target.user}@{label}"
        if target.port:
            label = f"{label}:{target.port}"
        if target.protocol != "ssh":
            label = f"{target.protocol}://{label}"
        target.label = label


def resolve(spec: str, config: RunConfig) -> list[TargetHost]:
    """Resolve a target specification; see TargetResolver.targets."""
    return TargetResolver(spec, config).targets()


def split_port(host: str) -> tuple[str, int | None]:
    """Split a trailing ``:port`` from a host.

    Bare IPv6 addresses carry no port; use ``[addr]:port`` for one.
    """
    if host.startswith("[") and "]:" in host and _is_ipv6(host[1 : host.index("]")]):
        address, _, port = host[1:].partition("]:")
        if not port.isdigit():
            raise ResolutionError(f"Invalid port in target '{host}'")
        return address, int(port)
    if host.startswith("[") and host.endswith("]") and _is_ipv6(host[1:-1]):
        return host[1:-1], None

    outside = RANGE_RE.sub("", host)
    if "[" in outside or "]" in outside:
        # Unbalanced brackets are reported by expand_host.
        return host, None
    if outside.count(":") > 1:
        return host, None
    match = PORT_RE.match(host)
    if match and ":" not in match.group("host").rsplit("]", 1)[-1]:
        return match.group("host"), int(match.group("port"))
    if ":" in outside:
        raise ResolutionError(f"Invalid port in target '{host}'")
    return host, None


def _is_ipv6(text: str) -> bool:
    try:
        ipaddress.IPv6Address(text)
    except ValueError:
        return False
    return True


def expand_host(host: str) -> list[str]:
    """Expand a CIDR network or a single bracketed range in a host name."""
    if "/" in host:
        try:
            network = ipaddress.ip_network(host, strict=False)
        except ValueError as e:
            raise ResolutionError(f"Invalid network '{host}': {e}") from e
        if network.num_addresses > MAX_EXPANDED_TARGETS + 2:
            raise TooManyTargets(network.num_addresses, MAX_EXPANDED_TARGETS)
        addresses = list(network.hosts()) or [network.network_address]
        return [str(address) for address in addresses]

    ranges = RANGE_RE.findall(host)
    if not ranges:
        if "[" in host or "]" in host:
            raise InvalidRange(host, "unbalanced brackets")
        return [host]
    if len(ranges) > 1:
        raise InvalidRange(host, "only one range is allowed per host")

    match = RANGE_RE.search(host)
    prefix, suffix = host[: match.start()], host[match.end() :]
    if "[" in prefix + suffix or "]" in prefix + suffix:
        raise InvalidRange(host, "unbalanced brackets")
    return [f"{prefix}{value}{suffix}" for value in expand_range(host, ranges[0])]


def expand_range(host: str, body: str) -> list[str]:
    """Expand ``start:end`` where both ends are integers or single letters.

    Numeric ranges keep the zero padding of the start value.
    """
    start, sep, end = body.partition(":")
    if not sep or not start or not end:
        raise InvalidRange(host, f"'[{body}]' must look like [start:end]")

    if start.isdigit() and end.isdigit():
        low, high = int(start), int(end)
        if low > high:
            raise InvalidRange(host, f"start {start} is greater than end {end}")
        width = len(start) if start.startswith("0") else 0
        return [str(n).zfill(width) for n in range(low, high + 1)]

    if len(start) == 1 and len(end) == 1 and start.isalpha() and end.isalpha():
        for alphabet in (string.ascii_lowercase, string.ascii_uppercase):
            if start in alphabet and end in alphabet:
                low, high = alphabet.index(start), alphabet.index(end)
                if low > high:
                    raise InvalidRange(host, f"start {start} is after end {end}")
                return list(alphabet[low : high + 1])
        raise InvalidRange(host, "letter ranges must not mix case")

    raise InvalidRange(host, f"'{start}' and '{end}' must both be numbers or single letters")
