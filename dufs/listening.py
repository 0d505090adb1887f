"""Choosing listen addresses, opening listeners and describing them to the user."""

from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable, Sequence
from typing import Any

import psutil

from dufs.args import BindAddr

_LISTEN_BACKLOG = 1024


def _strip_scope(address: str) -> str:
    return address.partition("%")[0]


def interface_addrs() -> tuple[list[BindAddr], list[BindAddr]]:
    """The IPv4 and IPv6 addresses of the local network interfaces.

    Raises OSError if the interfaces cannot be listed.
    """
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error) as exc:
        raise OSError("Failed to get local interface addresses") from exc

    ipv4: list[BindAddr] = []
    ipv6: list[BindAddr] = []
    for entries in interfaces.values():
        for entry in entries:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                ip = ipaddress.ip_address(_strip_scope(entry.address))
            except ValueError:
                continue
            target = ipv4 if ip.version == 4 else ipv6
            target.append(BindAddr(ip=ip))
    return ipv4, ipv6


def check_addrs(
    addrs: Iterable[BindAddr],
    interfaces: tuple[Sequence[BindAddr], Sequence[BindAddr]],
) -> tuple[list[BindAddr], list[BindAddr]]:
    """Split requested addresses into those to bind and those to announce.

    An IP family with no local interface is dropped. An unspecified address
    is announced as every interface address of its family. The announced
    addresses come back sorted.
    """
    ipv4_addrs, ipv6_addrs = interfaces
    new_addrs: list[BindAddr] = []
    print_addrs: list[BindAddr] = []
    for bind_addr in addrs:
        if bind_addr.ip is None:
            new_addrs.append(bind_addr)
            print_addrs.append(bind_addr)
            continue
        family = ipv4_addrs if bind_addr.ip.version == 4 else ipv6_addrs
        if not family:
            continue
        new_addrs.append(bind_addr)
        if bind_addr.ip.is_unspecified:
            print_addrs.extend(family)
        else:
            print_addrs.append(bind_addr)
    print_addrs.sort()
    return new_addrs, print_addrs


def _url(args: Any, bind_addr: BindAddr) -> str:
    if bind_addr.ip is None:
        return str(bind_addr.socket_path)
    if bind_addr.ip.version == 4:
        host = f"{bind_addr.ip}:{args.port}"
    else:
        host = f"[{bind_addr.ip}]:{args.port}"
    protocol = "https" if args.tls_cert is not None else "http"
    return f"{protocol}://{host}{args.uri_prefix}"


def format_listening(args: Any, print_addrs: Sequence[BindAddr]) -> str:
    """The message telling the user where the server can be reached."""
    urls = [_url(args, bind_addr) for bind_addr in print_addrs]
    if len(urls) == 1:
        return f"Listening on {urls[0]}"
    info = "\n".join(f"  {url}" for url in urls)
    return f"Listening on:\n{info}\n"


def create_listener(
    ip: str | ipaddress.IPv4Address | ipaddress.IPv6Address, port: int
) -> socket.socket:
    """A listening TCP socket on `ip:port`; IPv6 sockets accept IPv6 only.

    Raises OSError if the address cannot be bound.
    """
    address = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    family = socket.AF_INET if address.version == 4 else socket.AF_INET6
    sock = socket.socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    try:
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((str(address), port))
        sock.listen(_LISTEN_BACKLOG)
    except OSError as exc:
        sock.close()
        raise OSError(f"Failed to bind `{address}:{port}`") from exc
    return sock