"""
Directory Gateway — existence checks against the external directories
(projects, companies, etablissements) that tasks reference by id.

The engine does not own these records. When ``DIRECTORY_BASE_URL`` is not
configured every id is accepted (standalone / development mode).

Contract of the directory service:
    GET {base}/{kind}/{id}   → 200 if the record exists, 404 if not

Retry: max 2 attempts on connection errors / 5xx, short linear backoff.
Positive answers are cached in-process for ``_CACHE_TTL_SECONDS``.

Testability: pass a mock `session` to DirectoryGateway() in tests instead
of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time

import requests
from flask import current_app

from taskhub.core.exceptions import InternalError, ValidationError

logger = logging.getLogger(__name__)

DIRECTORY_KINDS = {
    "project_id": "projects",
    "company_id": "companies",
    "etablissement_id": "etablissements",
}

_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = 0.2
_DEFAULT_TIMEOUT = 5
_CACHE_TTL_SECONDS = 300


class DirectoryGateway:
    """Existence lookups for externally owned directory records.

    Usage:
        from taskhub.integrations.directory_gateway import directory_gateway
        directory_gateway.ensure_references({"project_id": 3})
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session
        # (kind, id) → expiry timestamp of a positive answer
        self._known: dict[tuple[str, int], float] = {}

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _base_url(self) -> str | None:
        base = current_app.config.get("DIRECTORY_BASE_URL")
        return base.rstrip("/") if base else None

    def exists(self, kind: str, record_id: int) -> bool:
        """Return True if the directory knows ``kind``/``record_id``.

        Raises:
            InternalError: directory unreachable after retries.
        """
        base = self._base_url()
        if base is None:
            return True

        key = (kind, record_id)
        expires = self._known.get(key)
        if expires and expires > time.monotonic():
            return True

        url = f"{base}/{kind}/{record_id}"
        timeout = current_app.config.get("DIRECTORY_TIMEOUT", _DEFAULT_TIMEOUT)
        last_error = None
        for attempt in range(1, _RETRY_MAX + 1):
            try:
                resp = self.session.get(url, timeout=timeout)
            except requests.RequestException as exc:
                last_error = exc
                logger.warning("Directory lookup failed attempt=%d url=%s: %s", attempt, url, exc)
            else:
                if resp.status_code == 404:
                    return False
                if resp.status_code < 400:
                    self._known[key] = time.monotonic() + _CACHE_TTL_SECONDS
                    return True
                last_error = requests.HTTPError(f"HTTP {resp.status_code}")
                logger.warning(
                    "Directory lookup error attempt=%d url=%s status=%s",
                    attempt, url, resp.status_code,
                )
                if resp.status_code < 500:
                    break
            if attempt < _RETRY_MAX:
                time.sleep(_RETRY_BACKOFF_SECONDS * attempt)

        raise InternalError("Directory service unavailable", cause=last_error)

    def ensure_references(self, data: dict) -> None:
        """Validate every directory id present in ``data``.

        Raises:
            ValidationError: naming each field whose id the directory does not know.
        """
        unknown = {}
        for field, kind in DIRECTORY_KINDS.items():
            value = data.get(field)
            if value is None:
                continue
            if not self.exists(kind, value):
                unknown[field] = f"no {kind} record with id {value}"
        if unknown:
            raise ValidationError("Unknown directory reference", details=unknown)

    def clear_cache(self) -> None:
        self._known.clear()


directory_gateway = DirectoryGateway()
