"""
How requests reach the progress server.

Servers on the local network are talked to directly, with certificate checks
relaxed so self-signed home servers work. Anything else goes through the relay
endpoint (see relay.py), which performs the request on our behalf. The choice
is made once, when the client is built.
"""

import ipaddress
import json
import logging
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

from .errors import TransportError

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/vnd.koreader.v1+json"
DEFAULT_TIMEOUT = 30


def is_lan_address(url: str) -> bool:
    try:
        host = urlparse(url if "://" in url else f"http://{url}").hostname
    except ValueError:
        return False
    if not host:
        return False
    host = host.lower()
    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local


class DirectTransport:
    def __init__(self, server_url: str, timeout: float = DEFAULT_TIMEOUT, verify: bool = False):
        self.server_url = server_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"accept": ACCEPT_HEADER})
        # Home servers are commonly self-signed
        self.session.verify = verify

    def request(self, endpoint: str, method: str = "GET", headers: Optional[dict] = None,
                body: Optional[dict] = None) -> requests.Response:
        url = f"{self.server_url}{endpoint}"
        try:
            return self.session.request(method, url, headers=headers or {}, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e)) from e


class RelayTransport:
    def __init__(self, server_url: str, relay_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.server_url = server_url.rstrip('/')
        self.relay_url = relay_url
        self.timeout = timeout
        self.session = requests.Session()

    def envelope(self, endpoint: str, method: str, headers: Optional[dict], body: Optional[dict]) -> dict:
        payload = {
            "serverUrl": self.server_url,
            "endpoint": endpoint,
            "method": method,
            "headers": dict(headers or {}),
        }
        if body is not None:
            payload["body"] = body
        return payload

    def request(self, endpoint: str, method: str = "GET", headers: Optional[dict] = None,
                body: Optional[dict] = None) -> requests.Response:
        logger.debug(f"Relaying {method} {endpoint} via {self.relay_url}")
        try:
            return self.session.post(
                self.relay_url,
                data=json.dumps(self.envelope(endpoint, method, headers, body)),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e)) from e


def select_transport(server_url: str, relay_url: str = "",
                     is_reachable: Callable[[str], bool] = is_lan_address,
                     timeout: float = DEFAULT_TIMEOUT):
    if is_reachable(server_url):
        logger.debug(f"Using direct connection to {server_url}")
        return DirectTransport(server_url, timeout=timeout)
    if not relay_url:
        # Nothing to relay through; public servers get normal TLS checks
        logger.warning(f"⚠️ No relay configured, connecting to {server_url} directly")
        return DirectTransport(server_url, timeout=timeout, verify=True)
    logger.debug(f"Using relay {relay_url} for {server_url}")
    return RelayTransport(server_url, relay_url, timeout=timeout)
