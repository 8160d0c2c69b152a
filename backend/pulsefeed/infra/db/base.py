"""Database base configuration."""
import os
import ssl
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.orm import DeclarativeBase


def normalize_async_pg_url(url: str) -> str:
    """Ensure URL uses asyncpg driver; hosted Postgres often hands out postgresql:// (sync)."""
    u = (url or "").strip()
    if u.startswith("postgres://"):
        return u.replace("postgres://", "postgresql+asyncpg://", 1)
    if u.startswith("postgresql://"):
        return u.replace("postgresql://", "postgresql+asyncpg://", 1)
    return u


def async_pg_connect_args(url: str) -> dict:
    """connect_args for asyncpg: ssl when the URL asks for sslmode=require (asyncpg rejects sslmode).
    Set DATABASE_SSL_VERIFY=true for strict certificate verification."""
    qs = parse_qs(urlparse(url).query, keep_blank_values=True)
    if qs.get("sslmode") != ["require"]:
        return {}
    if os.environ.get("DATABASE_SSL_VERIFY", "false").strip().lower() in ("true", "1"):
        return {"ssl": True}
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return {"ssl": ctx}


def strip_sslmode(url: str) -> str:
    """URL without the sslmode query parameter."""
    if "sslmode=" not in url:
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query, keep_blank_values=True)
    qs.pop("sslmode", None)
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# Models are registered by importing pulsefeed.infra.db.models; base.py must not
# import them (models -> base -> models would be circular).
