import json
from os import getenv
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCANNER_URL = "https://tczswboifjsccnvhzq2vng2xm40kmrfb.lambda-url.ap-south-1.on.aws"


class RouteRule(BaseModel):
    """
    Maps a literal path prefix onto an upstream origin.

    Immutable once built; holds no per-request state.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    prefix: str
    target: str
    change_origin: bool = Field(default=True, alias="changeOrigin")
    secure: bool = True
    strip_prefix: bool = Field(default=True, alias="stripPrefix")

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"prefix must start with '/': {value!r}")
        return value

    @field_validator("target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"target must be an absolute http(s) URL: {value!r}")
        return value

    @property
    def target_origin(self) -> str:
        return self.target.rstrip("/")

    @property
    def target_host(self) -> str:
        return urlsplit(self.target).netloc

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def rewrite(self, path: str) -> str:
        """Strip the prefix once, e.g. '/api/scan' -> '/scan' and '/api' -> ''."""
        if not self.strip_prefix:
            return path
        return path[len(self.prefix):] if self.matches(path) else path


class Settings(BaseModel):
    routes: list[RouteRule] = Field(default_factory=list)
    timeout: float = 20.0
    host: str = "127.0.0.1"
    port: int = 5173
    log_level: str = "INFO"


def load_routes_file(path: str | Path) -> list[RouteRule]:
    """
    Read routes from a JSON object keyed by prefix, the same shape as a
    dev-server proxy table:

        {"/api": {"target": "https://...", "changeOrigin": true, "secure": true}}
    """
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a JSON object keyed by path prefix")
    return [RouteRule(prefix=prefix, **options) for prefix, options in raw.items()]


def load_settings() -> Settings:
    routes_file = getenv("DASHPROXY_ROUTES_FILE")
    if routes_file:
        routes = load_routes_file(routes_file)
    else:
        routes = [RouteRule(prefix="/api", target=getenv("DASHPROXY_TARGET", SCANNER_URL))]

    return Settings(
        routes=routes,
        timeout=float(getenv("DASHPROXY_TIMEOUT", "20.0")),
        host=getenv("DASHPROXY_HOST", "127.0.0.1"),
        port=int(getenv("DASHPROXY_PORT", "5173")),
        log_level=getenv("DASHPROXY_LOG_LEVEL", "INFO"),
    )


# default in-memory config
settings = load_settings()
