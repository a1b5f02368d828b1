"""
Immutable proxy configuration.

Everything the request path needs from the environment is read once by
``load_config`` and carried around as a frozen ``ProxyConfig``; nothing below
the application factory looks at ``os.environ`` again.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlsplit

logger = logging.getLogger("uvicorn.error")

DEFAULT_PRODUCTION_ORIGIN = "https://finance.bhenning.com"
DEFAULT_ALLOWED_DOMAIN = "vercel.bhenning.com"
DEFAULT_COOKIE_DOMAIN = "bhenning.com"
DEFAULT_DEV_CORS_ORIGIN = "http://localhost:3000"
DEFAULT_PROXY_TIMEOUT = 30.0


class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"

    @classmethod
    def from_node_env(cls, value: Optional[str]) -> "Environment":
        # Only an explicit "production" enables production behaviour.
        if (value or "").strip().lower() == cls.PRODUCTION.value:
            return cls.PRODUCTION
        return cls.DEVELOPMENT


class ConfigError(ValueError):
    """Raised when the environment holds an unusable proxy setting."""


@dataclass(frozen=True)
class ProxyConfig:
    environment: Environment = Environment.DEVELOPMENT
    upstream_override: Optional[str] = None
    production_origin: str = DEFAULT_PRODUCTION_ORIGIN
    development_origin: Optional[str] = None
    allowed_domain: str = DEFAULT_ALLOWED_DOMAIN
    cookie_domain: str = DEFAULT_COOKIE_DOMAIN
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    dev_cors_origin: str = DEFAULT_DEV_CORS_ORIGIN

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment is Environment.DEVELOPMENT

    @property
    def upstream_origin(self) -> str:
        """Explicit override, then the environment default, then production."""
        if self.upstream_override:
            return self.upstream_override
        if self.is_production:
            return self.production_origin
        return self.development_origin or self.production_origin


def _origin(name: str, value: Optional[str]) -> Optional[str]:
    value = (value or "").strip().rstrip("/")
    if not value:
        return None
    parsed = urlsplit(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"{name} must be an http(s) origin, got {value!r}")
    return value


def _timeout(value: Optional[str]) -> float:
    if not value:
        return DEFAULT_PROXY_TIMEOUT
    try:
        timeout = float(value)
    except ValueError as e:
        raise ConfigError(f"PROXY_TIMEOUT must be a number, got {value!r}") from e
    if timeout <= 0:
        raise ConfigError(f"PROXY_TIMEOUT must be positive, got {value!r}")
    return timeout


def load_config(environ: Optional[Mapping[str, str]] = None) -> ProxyConfig:
    """Build the process-wide ``ProxyConfig`` from environment variables."""
    env = os.environ if environ is None else environ

    config = ProxyConfig(
        environment=Environment.from_node_env(env.get("NODE_ENV")),
        upstream_override=_origin("API_PROXY_TARGET", env.get("API_PROXY_TARGET")),
        production_origin=_origin(
            "PRODUCTION_API_ORIGIN", env.get("PRODUCTION_API_ORIGIN")
        )
        or DEFAULT_PRODUCTION_ORIGIN,
        development_origin=_origin("API_BASE_URL", env.get("API_BASE_URL")),
        allowed_domain=(
            env.get("PROXY_ALLOWED_DOMAIN") or DEFAULT_ALLOWED_DOMAIN
        ).strip().lower(),
        cookie_domain=(env.get("COOKIE_DOMAIN") or DEFAULT_COOKIE_DOMAIN)
        .strip()
        .lower(),
        proxy_timeout=_timeout(env.get("PROXY_TIMEOUT")),
        dev_cors_origin=env.get("DEV_CORS_ORIGIN") or DEFAULT_DEV_CORS_ORIGIN,
    )
    logger.info(
        f"[Config] environment={config.environment.value} "
        f"upstream={config.upstream_origin} allowed_domain={config.allowed_domain}"
    )
    return config
