"""Work out the address the Xcode Server should use to call us back."""

import ipaddress
import logging
import socket
from typing import Optional
from urllib.parse import urlsplit

from .config import BridgeConfig

logger = logging.getLogger(__name__)


def _format_host(address: str) -> str:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return address
    if ip.version == 6:
        return f"[{address}]"
    return address


def preferred_address(host: str, port: int) -> str:
    """
    Return the local address of the interface that routes to ``host``.

    A UDP connect picks the route without sending packets. Returns an empty
    string when the host does not resolve or no route exists.
    """
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as exc:
        logger.warning("Unable to resolve %s: %s", host, exc)
        return ""
    for family, socktype, proto, _canonname, sockaddr in infos:
        try:
            with socket.socket(family, socktype, proto) as sock:
                sock.connect(sockaddr)
                local = sock.getsockname()[0]
        except OSError:
            continue
        if local:
            return _format_host(local)
    return ""


def callback_base_url(config: BridgeConfig) -> str:
    host: Optional[str] = config.callback_host
    if not host:
        parts = urlsplit(config.xcode_url)
        default_port = 443 if parts.scheme == "https" else 80
        if parts.hostname:
            host = preferred_address(parts.hostname, parts.port or default_port)
    if not host:
        host = "localhost"
    return f"http://{_format_host(host)}:{config.server_port}"
