"""Framework-neutral view of an incoming request.

The auth middleware and the rate limiter only need headers, cookies, method,
path and client address, so routes hand them this object instead of a
starlette ``Request``.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Request

from authgate.core.constants import MAX_USER_AGENT_LENGTH, SAFE_METHODS
from authgate.utils.helpers import clamp, get_client_ip


@dataclass
class RequestContext:
    method: str = "GET"
    path: str = "/"
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    client_ip: str = "unknown"

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        self.method = self.method.upper()

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            client_ip=get_client_ip(request),
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    @property
    def bearer_token(self) -> Optional[str]:
        value = self.header("authorization")
        if not value:
            return None
        scheme, _, token = value.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    @property
    def user_agent(self) -> Optional[str]:
        return clamp(self.header("user-agent"), MAX_USER_AGENT_LENGTH)

    @property
    def is_safe_method(self) -> bool:
        return self.method in SAFE_METHODS
