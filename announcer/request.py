"""
Proxy Announcer Request Construction
Builds self-contained registry requests from a validated configuration
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple
from urllib.parse import urlencode

from .config import AnnouncerConfig


FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded; charset=UTF-8'


class RequestIntent(Enum):
    """Registry operations"""
    REGISTER = "/api/register"
    REGISTER_FALLBACK = "/api/register-fallback"
    UNREGISTER = "/api/unregister"

    @property
    def path(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def for_registration(cls, is_fallback: bool) -> 'RequestIntent':
        """Pick the register variant for an instance"""
        return cls.REGISTER_FALLBACK if is_fallback else cls.REGISTER


@dataclass(frozen=True)
class RequestDescriptor:
    """A fully formed HTTP request, inert until dispatched"""
    url: str
    intent: RequestIntent
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def base_url(config: AnnouncerConfig) -> str:
    host = config.proxy_host
    if ':' in host and not host.startswith('['):
        host = f"[{host}]"
    return f"http://{host}:{config.proxy_port}"


def query_params(config: AnnouncerConfig, intent: RequestIntent) -> List[Tuple[str, str]]:
    """Ordered query parameters for an intent"""
    if intent is RequestIntent.UNREGISTER:
        return [('name', config.server_name)]
    return [
        ('name', config.server_name),
        ('host', config.server_host),
        ('port', config.server_port),
    ]


def request_headers(config: AnnouncerConfig) -> Dict[str, str]:
    headers = {'Content-Type': FORM_CONTENT_TYPE}
    # Blank keys never reach the wire
    token = (config.proxy_key or '').strip()
    if token:
        headers['Authorization'] = f'Bearer {token}'
    return headers


def build_request(config: AnnouncerConfig, intent: RequestIntent) -> RequestDescriptor:
    """
    Build the registry request for an intent.

    Parameters travel form-encoded in the query string; the POST body is
    always empty because the registry reads only the query.

    Args:
        config: Validated configuration
        intent: Which registry operation to perform

    Returns:
        RequestDescriptor ready for dispatch
    """
    query = urlencode(query_params(config, intent))
    return RequestDescriptor(
        url=f"{base_url(config)}{intent.path}?{query}",
        intent=intent,
        headers=request_headers(config),
    )
