"""Database URL resolution for Alembic.

The application connects with psycopg2, which accepts either a URL or a
libpq key=value DSN in DATABASE_URL. SQLAlchemy needs a URL, so DSNs are
converted here. Kept apart from env.py so it can be imported (and tested)
without an Alembic context.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

SQLALCHEMY_SCHEME = "postgresql+psycopg2"

# key=value or key='quoted value' (backslash escapes inside quotes)
_DSN_PAIR = re.compile(r"(\w+)\s*=\s*('(?:\\.|[^'\\])*'|\S+)")
_DSN_ESCAPE = re.compile(r"\\(.)")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq DSN into a dict.

    Example:
        "dbname=bridge user=u password='a b'" -> {"dbname": "bridge", "user": "u", "password": "a b"}
    """
    params: dict[str, str] = {}
    for key, raw in _DSN_PAIR.findall(dsn):
        if raw.startswith("'") and raw.endswith("'") and len(raw) >= 2:
            raw = _DSN_ESCAPE.sub(r"\1", raw[1:-1])
        params[key] = raw
    return params


def libpq_dsn_to_url(dsn: str) -> str:
    """Build a SQLAlchemy URL from a libpq DSN.

    DB_PASSWORD fills a missing password. A host starting with "/" is a
    unix socket directory and goes into the `host` query parameter.
    """
    params = parse_libpq_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = quote_plus(params.get("user", ""))
    if password:
        credentials += ":" + quote_plus(password)
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{SQLALCHEMY_SCHEME}://{credentials}@/{dbname}?host={quote_plus(host)}"
    port = params.get("port", "5432")
    return f"{SQLALCHEMY_SCHEME}://{credentials}@{host}:{port}/{dbname}"


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def database_url_from_env() -> str:
    """SQLAlchemy URL for DATABASE_URL (URL or libpq DSN).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)

    scheme, rest = url.split("://", 1)
    if scheme in ("postgres", "postgresql"):
        url = f"{SQLALCHEMY_SCHEME}://{rest}"

    password = os.environ.get("DB_PASSWORD", "")
    return _with_password(url, password) if password else url
