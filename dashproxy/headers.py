"""Header handling on both legs of a proxied request."""
from urllib.parse import urlsplit

import httpx

from .config import RouteRule

HOP_BY_HOP_HEADERS = {
    b'connection',
    b'keep-alive',
    b'proxy-authenticate',
    b'proxy-authorization',
    b'te',
    b'trailers',
    b'transfer-encoding',
    b'upgrade',
}

# httpx hands back a decoded body, so its framing headers no longer apply
RESPONSE_EXCLUDED_HEADERS = {h.decode() for h in HOP_BY_HOP_HEADERS} | {
    'content-encoding',
    'content-length',
}

# left to httpx so the upstream only picks codings it can decode
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {b'accept-encoding'}


def forward_request_headers(raw_headers: list[tuple[bytes, bytes]],
                            rule: RouteRule,
                            client_host: str | None,
                            scheme: str) -> list[tuple[bytes, bytes]]:
    """
    Build the outbound header list for the upstream request.

    Hop-by-hop headers and ``Accept-Encoding`` are dropped. ``Host`` becomes
    the target's host when the rule changes origin, otherwise the caller's
    ``Host`` is kept. Repeated ``X-Forwarded-For`` hops are joined in order.
    Everything else passes through in order, duplicates included.
    """
    original_host = None
    forwarded_for = []
    headers = []
    for key, value in raw_headers:
        name = key.lower()
        if name in REQUEST_EXCLUDED_HEADERS:
            continue
        if name == b'host':
            original_host = value
            continue
        if name == b'x-forwarded-for':
            forwarded_for.append(value)
            continue
        headers.append((key, value))

    if rule.change_origin:
        headers.append((b'host', rule.target_host.encode()))
    elif original_host is not None:
        headers.append((b'host', original_host))

    present = {k.lower() for k, _ in headers}
    if original_host is not None and b'x-forwarded-host' not in present:
        headers.append((b'x-forwarded-host', original_host))
    if b'x-forwarded-proto' not in present:
        headers.append((b'x-forwarded-proto', scheme.encode()))
    if client_host:
        forwarded_for.append(client_host.encode())
    if forwarded_for:
        headers.append((b'x-forwarded-for', b', '.join(forwarded_for)))

    return headers


def rewrite_location(location: str, rule: RouteRule, local_origin: str) -> str:
    """
    Point a redirect back at the proxy.

    ``https://upstream/scan`` and ``/scan`` both become ``<local>/api/scan``
    for an ``/api`` rule; anything off the target origin is left alone.
    """
    mount = rule.prefix.rstrip('/') if rule.strip_prefix else ''
    origin = rule.target_origin
    if location.startswith(origin):
        rest = location[len(origin):]
        if rest == '' or rest[0] in '/?#':
            return local_origin.rstrip('/') + mount + rest
        return location
    if location.startswith('/') and not location.startswith('//'):
        base = urlsplit(rule.target).path.rstrip('/')
        if base and location.startswith(base) and location[len(base):][:1] in ('', '/', '?', '#'):
            location = location[len(base):] or '/'
        return mount + location
    return location


def rewrite_cookie_domain(cookie: str, rule: RouteRule) -> str:
    """Drop a ``Domain`` attribute naming the target so the cookie binds to the local origin."""
    target_hostname = (urlsplit(rule.target).hostname or '').lower()
    parts = cookie.split(';')
    kept = [parts[0]]
    for attr in parts[1:]:
        name, _, value = attr.strip().partition('=')
        if name.lower() == 'domain' and value.strip().lstrip('.').lower() == target_hostname:
            continue
        kept.append(attr)
    return ';'.join(kept)


def filter_response_headers(headers: httpx.Headers,
                            rule: RouteRule,
                            local_origin: str) -> list[tuple[str, str]]:
    filtered = []
    for key, value in headers.multi_items():
        name = key.lower()
        if name in RESPONSE_EXCLUDED_HEADERS:
            continue
        if name == 'location':
            value = rewrite_location(value, rule, local_origin)
        elif name == 'set-cookie':
            value = rewrite_cookie_domain(value, rule)
        filtered.append((key, value))
    return filtered
