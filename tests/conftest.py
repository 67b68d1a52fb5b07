# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import httpx
import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request, Response
from httpx import AsyncClient, ASGITransport

from dashproxy.config import settings, RouteRule
from dashproxy.main import application
from dashproxy.testing.fake_transport import FakeTransport


#----Routes overrides for tests----
@pytest.fixture(scope='session', autouse=True)
def set_routes():
    settings.routes = [
        RouteRule(prefix='/api', target='https://scanner.example'),
        RouteRule(prefix='/plain', target='http://plain.example:8080/base',
                  change_origin=False, strip_prefix=False),
        RouteRule(prefix='/insecure', target='https://self-signed.example', secure=False),
    ]


@pytest.fixture
def upstream_app() -> FastAPI:
    app = FastAPI()     # mock upstream app for tests

    @app.get("/redirect")
    async def redirect():
        return Response(status_code=302, headers={
            "location": "https://scanner.example/scan?id=7",
        })

    @app.get("/cookies")
    async def cookies():
        resp = Response(content=b'{}', media_type='application/json')
        resp.headers.append('set-cookie', 'session=abc; Domain=scanner.example; Path=/')
        resp.headers.append('set-cookie', 'theme=dark; Domain=.other.example')
        return resp

    @app.options("/scan")
    async def preflight():
        return Response(status_code=204, headers={
            "access-control-allow-origin": "*",
            "access-control-allow-methods": "GET, POST, OPTIONS",
            "access-control-allow-headers": "content-type",
        })

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
    async def echo(path: str, request: Request):  # reports exactly what arrived upstream
        return {
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query,
            "body": (await request.body()).decode(),
            "received_headers": dict(request.headers),
        }

    return app


@pytest.fixture
def proxy_app() -> FastAPI:
    return application


@pytest.fixture
async def proxy_client(proxy_app: FastAPI, upstream_app: FastAPI):
    """Proxy test client with upstreams mocked via ASGITransport"""
    upstream_client = AsyncClient(
        transport=ASGITransport(app=upstream_app),
        headers={'x-test-client': 'verified'},
    )
    insecure_client = AsyncClient(
        transport=ASGITransport(app=upstream_app),
        headers={'x-test-client': 'unverified'},
    )
    # Lifespan management to handle async testing with dashproxy.main app
    async with LifespanManager(proxy_app):
        # Swap the real upstream clients for the test ones
        proxy_app.state.http_client = upstream_client
        proxy_app.state.insecure_http_client = insecure_client

        # client with transport to the proxy app
        proxy_transport = ASGITransport(app=proxy_app)
        async with AsyncClient(
                transport=proxy_transport,
                base_url="http://localhost:5173") as client:
            yield client

    await upstream_client.aclose()
    await insecure_client.aclose()


@pytest.fixture
async def use_transport(proxy_app: FastAPI, proxy_client):
    """Point one of the proxy's upstream clients at a FakeTransport."""
    clients = []

    def _use(transport: FakeTransport, attr: str = 'http_client') -> FakeTransport:
        client = httpx.AsyncClient(transport=transport)
        clients.append(client)
        setattr(proxy_app.state, attr, client)
        return transport

    yield _use

    for client in clients:
        await client.aclose()
