import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response, HTTPException

from .config import RouteRule, settings
from .headers import forward_request_headers, filter_response_headers
from .routing import find_route, build_upstream_url

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    #---- Startup ----
    if not hasattr(app.state, 'http_client'):
        app.state.http_client = httpx.AsyncClient(timeout=settings.timeout, verify=True)

    if any(not rule.secure for rule in settings.routes) \
            and not hasattr(app.state, 'insecure_http_client'):
        logger.warning('TLS verification disabled for: %s',
                       ', '.join(r.prefix for r in settings.routes if not r.secure))
        app.state.insecure_http_client = httpx.AsyncClient(timeout=settings.timeout, verify=False)

    for rule in settings.routes:
        logger.info('Proxying %s -> %s', rule.prefix, rule.target)

    try:
        yield
    finally:
        #---- Shutdown ----
        if hasattr(app.state, 'http_client'):
            await app.state.http_client.aclose()
        if hasattr(app.state, 'insecure_http_client'):
            await app.state.insecure_http_client.aclose()

application = FastAPI(lifespan=lifespan)


def client_for(app: FastAPI, rule: RouteRule) -> httpx.AsyncClient:
    # a secure rule only ever gets the verifying client
    if rule.secure:
        return app.state.http_client
    return app.state.insecure_http_client


@application.api_route(
    path="/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
)
async def proxy(path: str, request: Request):
    # match on the path as sent, percent-escapes intact
    raw_path = request.scope.get('raw_path') or request.url.path.encode()
    rule, upstream_path = find_route(raw_path.split(b'?', 1)[0].decode('latin-1'))
    if rule is None:
        raise HTTPException(status_code=404, detail="No upstream route found")

    url = build_upstream_url(rule, upstream_path, request.url.query)
    headers = forward_request_headers(
        request.headers.raw,
        rule,
        request.client.host if request.client else None,
        request.url.scheme,
    )
    body = await request.body()

    # ---- Proxy Request ----
    logger.debug('%s %s -> %s', request.method, request.url.path, url)
    try:
        resp = await client_for(request.app, rule).request(
            request.method,
            url,
            headers=headers,
            content=body,
        )
    except httpx.TimeoutException as exc:
        logger.warning('Upstream timed out: %s %s (%r)', request.method, url, exc)
        raise HTTPException(status_code=504, detail=f"Upstream timed out: {exc}")
    except httpx.RequestError as exc:
        logger.warning('Upstream request failed: %s %s (%r)', request.method, url, exc)
        raise HTTPException(status_code=502, detail=str(exc) or exc.__class__.__name__)

    response = Response(content=resp.content, status_code=resp.status_code)
    local_origin = str(request.base_url)
    for key, value in filter_response_headers(resp.headers, rule, local_origin):
        response.headers.append(key, value)
    # HEAD has no body to measure, report the upstream's length when it is unencoded
    if request.method == 'HEAD' and 'content-length' in resp.headers \
            and 'content-encoding' not in resp.headers:
        response.headers['content-length'] = resp.headers['content-length']
    return response
