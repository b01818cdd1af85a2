"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the CSRF same-origin check used by the tracker write endpoints.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    host = p.hostname.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, host, int(port)


def _parse_server(req: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("TRACKER_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        xf_proto_raw = req.headers.get("x-forwarded-proto") or req.url.scheme or ""
        xf_host_raw = req.headers.get("x-forwarded-host") or req.headers.get("host") or ""
        xf_proto = xf_proto_raw.split(",")[0].strip()
        xf_host = xf_host_raw.split(",")[0].strip()
        scheme = (xf_proto or req.url.scheme or "http").lower()
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = _default_port(scheme)
            host = host_only.lower()
        else:
            host = (xf_host or (req.url.hostname or "")).lower()
            port = int(req.url.port) if req.url.port else _default_port(scheme)
        xf_port_raw = req.headers.get("x-forwarded-port") or ""
        if xf_port_raw:
            try:
                port = int(xf_port_raw.split(",")[0].strip())
            except ValueError:
                port = _default_port(scheme)
        return scheme, host, port

    scheme = (req.url.scheme or "http").lower()
    host = (req.url.hostname or "").lower()
    port = int(req.url.port) if req.url.port else _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when TRACKER_TRUST_PROXY=true.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False
