"""Thin Fakturoid API v3 client (OAuth client-credentials flow)."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from requests import get, post
from requests.auth import HTTPBasicAuth

from faktury.config import FAKTUROID_API_URL, FAKTUROID_TIMEOUT, Credentials
from faktury.services.exceptions import FakturoidAuthError, FakturoidError
from faktury.utils.normalizers import normalize_tax_id

logger = logging.getLogger(__name__)

_AUTH_STATUS_CODES = frozenset({401, 403})
_TOKEN_REJECTED_CODES = frozenset({400, 401, 403})


def _headers(access_token: str, email: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Bearer {access_token}",
        "User-Agent": f"FakturyExport ({email})",
    }


def _account_url(slug: str, path: str) -> str:
    return f"{FAKTUROID_API_URL}/accounts/{quote(slug, safe='')}/{path}"


def _check_response(resp: Any, action: str) -> None:
    if resp.ok:
        return
    body = resp.text[:500] if resp.text else ""
    message = f"Chyba Fakturoid API {action} ({resp.status_code}): {body}"
    if resp.status_code in _AUTH_STATUS_CODES:
        raise FakturoidAuthError(message, status_code=resp.status_code)
    raise FakturoidError(message, status_code=resp.status_code)


def get_access_token(credentials: Credentials) -> str:
    """Exchange client id/secret for a bearer token.

    Raises FakturoidAuthError when the credentials are rejected and
    FakturoidError when the token endpoint fails for any other reason.
    """
    resp = post(
        f"{FAKTUROID_API_URL}/oauth/token",
        json={"grant_type": "client_credentials"},
        auth=HTTPBasicAuth(credentials.client_id, credentials.client_secret),
        headers={"Accept": "application/json", "User-Agent": f"FakturyExport ({credentials.email})"},
        timeout=FAKTUROID_TIMEOUT,
    )
    if not resp.ok:
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        reason = data.get("error_description") or data.get("error") or resp.text[:200]
        message = f"OAuth chyba ({resp.status_code}): {reason}"
        # invalid_client / invalid_grant come back as 400/401; anything else is an outage
        if resp.status_code in _TOKEN_REJECTED_CODES:
            raise FakturoidAuthError(message, status_code=resp.status_code, response=data)
        raise FakturoidError(message, status_code=resp.status_code, response=data)

    token = resp.json().get("access_token")
    if not token:
        raise FakturoidAuthError("OAuth odpověď neobsahuje access_token")
    return token


def get_account(credentials: Credentials, access_token: str) -> dict:
    """Return the account detail (name, plan, ...) for the configured slug."""
    resp = get(
        _account_url(credentials.slug, "account.json"),
        headers=_headers(access_token, credentials.email),
        timeout=FAKTUROID_TIMEOUT,
    )
    _check_response(resp, "account")
    return resp.json()


def find_subject_by_tax_id(credentials: Credentials, access_token: str, tax_id: str) -> dict | None:
    """Search subjects and return the one whose registration number equals *tax_id*.

    Full-text search may return near matches, so registration numbers are
    compared after normalization. Returns None when nothing matches exactly.
    """
    resp = get(
        _account_url(credentials.slug, "subjects/search.json"),
        params={"query": tax_id},
        headers=_headers(access_token, credentials.email),
        timeout=FAKTUROID_TIMEOUT,
    )
    _check_response(resp, "subjects/search")

    wanted = normalize_tax_id(tax_id)
    for subject in resp.json():
        if normalize_tax_id(subject.get("registration_no")) == wanted:
            return subject
    logger.info("No Fakturoid subject with IČO %s", tax_id)
    return None


def create_invoice(credentials: Credentials, access_token: str, payload: dict) -> dict:
    """Create an invoice and return Fakturoid's representation of it."""
    resp = post(
        _account_url(credentials.slug, "invoices.json"),
        json=payload,
        headers=_headers(access_token, credentials.email),
        timeout=FAKTUROID_TIMEOUT,
    )
    _check_response(resp, "invoices")
    return resp.json()
