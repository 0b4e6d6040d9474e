"""Sending draft invoices to Fakturoid, one group at a time.

A failure on one invoice is recorded in its result entry and the batch
moves on; nothing is retried. Only problems that affect the whole request
(missing or rejected credentials) are raised.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date

import requests.exceptions

from faktury.config import Credentials
from faktury.models.invoice import DraftInvoice
from faktury.services.exceptions import (
    FakturoidAuthError,
    FakturoidError,
    MissingCredentialsError,
)
from faktury.services.fakturoid_client import (
    create_invoice,
    find_subject_by_tax_id,
    get_access_token,
    get_account,
)
from faktury.services.payload_builder import to_submission_payload

logger = logging.getLogger(__name__)

_GROUP_ERRORS = (FakturoidError, requests.exceptions.RequestException)


def _today() -> date:
    return date.today()


@dataclass
class SubmissionResult:
    group_key: str
    tax_id: str | None
    client_name: str | None
    success: bool
    invoice_id: int | None = None
    invoice_number: str | None = None
    total: str | None = None
    currency: str | None = None
    error: str | None = None


@dataclass
class SubmissionReport:
    results: list[SubmissionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass
class SubjectCheck:
    tax_id: str
    found: bool
    subject_id: int | None = None
    subject_name: str | None = None
    error: str | None = None


@dataclass
class SubjectCheckReport:
    results: list[SubjectCheck] = field(default_factory=list)

    @property
    def found(self) -> int:
        return sum(1 for r in self.results if r.found)

    @property
    def not_found(self) -> int:
        return sum(1 for r in self.results if not r.found)


@dataclass
class ConnectionStatus:
    success: bool
    needs_credentials: bool = False
    account: dict | None = None
    error: str | None = None
    server_credentials: bool = False


def _require(credentials: Credentials | None) -> Credentials:
    if credentials is None:
        raise MissingCredentialsError(
            "Zadejte Fakturoid API údaje (Client ID, Client Secret, Slug)"
        )
    return credentials


def _failure(draft: DraftInvoice, message: str) -> SubmissionResult:
    return SubmissionResult(
        group_key=draft.group_key,
        tax_id=draft.tax_id,
        client_name=draft.client_name,
        success=False,
        currency=draft.currency,
        error=message,
    )


def _skip_reason(draft: DraftInvoice, allowed_countries: Collection[str] | None) -> str | None:
    if not draft.tax_id and draft.subject_id is None:
        return "Klient nemá IČO, subjekt nelze dohledat"
    if allowed_countries and (draft.country or "") not in allowed_countries:
        return f"Stát {draft.country or '?'} není povolen pro odeslání do Fakturoidu"
    if not draft.lines:
        return "Faktura nemá žádné položky"
    return None


def submit_one(
    draft: DraftInvoice,
    credentials: Credentials,
    access_token: str,
    language: str = "cz",
) -> SubmissionResult:
    """Resolve the subject of *draft* and create its invoice.

    Lookup and API failures are returned as a failed result, not raised.
    """
    try:
        subject_id = draft.subject_id
        if subject_id is None:
            subject = find_subject_by_tax_id(credentials, access_token, draft.tax_id or "")
            if subject is None:
                return _failure(draft, f"Subjekt s IČO {draft.tax_id} nebyl ve Fakturoidu nalezen")
            subject_id = subject["id"]

        payload = to_submission_payload(draft, subject_id, language, issued_on=_today())
        created = create_invoice(credentials, access_token, payload)
    except _GROUP_ERRORS as exc:
        logger.warning("Invoice for %s failed: %s", draft.group_key, exc)
        return _failure(draft, str(exc))

    total = created.get("total")
    return SubmissionResult(
        group_key=draft.group_key,
        tax_id=draft.tax_id,
        client_name=draft.client_name,
        success=True,
        invoice_id=created.get("id"),
        invoice_number=created.get("number"),
        total=str(total) if total is not None else None,
        currency=draft.currency,
    )


def submit_invoices(
    drafts: Sequence[DraftInvoice],
    credentials: Credentials | None,
    *,
    language: str = "cz",
    allowed_countries: Collection[str] | None = None,
) -> SubmissionReport:
    """Create every draft in Fakturoid, sequentially, continuing past failures.

    Drafts that cannot be sent (no IČO, country not allowed) get an explicit
    error entry. Raises MissingCredentialsError / FakturoidAuthError when the
    credentials are missing or rejected, FakturoidError when the token
    endpoint is down.
    """
    credentials = _require(credentials)
    access_token = get_access_token(credentials)

    report = SubmissionReport()
    for draft in drafts:
        reason = _skip_reason(draft, allowed_countries)
        if reason is not None:
            logger.info("Skipping %s: %s", draft.group_key, reason)
            report.results.append(_failure(draft, reason))
            continue
        report.results.append(submit_one(draft, credentials, access_token, language))

    logger.info(
        "Submitted %d invoices: %d ok, %d failed",
        report.total,
        report.success_count,
        report.error_count,
    )
    return report


def check_subjects(tax_ids: Iterable[str], credentials: Credentials | None) -> SubjectCheckReport:
    """Look up each IČO (duplicates once, order kept) without creating anything."""
    credentials = _require(credentials)
    access_token = get_access_token(credentials)

    report = SubjectCheckReport()
    for tax_id in dict.fromkeys(tax_ids):
        try:
            subject = find_subject_by_tax_id(credentials, access_token, tax_id)
        except _GROUP_ERRORS as exc:
            report.results.append(SubjectCheck(tax_id=tax_id, found=False, error=str(exc)))
            continue
        report.results.append(
            SubjectCheck(
                tax_id=tax_id,
                found=subject is not None,
                subject_id=subject.get("id") if subject else None,
                subject_name=subject.get("name") if subject else None,
            )
        )
    return report


def check_connection(credentials: Credentials | None, *, server_credentials: bool = False) -> ConnectionStatus:
    """Verify the credentials by fetching the account detail.

    Authentication problems come back as ``needs_credentials=True``; other
    failures as a plain error. Never raises for remote problems.
    """
    if credentials is None:
        return ConnectionStatus(
            success=False,
            needs_credentials=True,
            error="Zadejte Fakturoid API údaje (Client ID, Client Secret, Slug)",
        )
    try:
        access_token = get_access_token(credentials)
        account = get_account(credentials, access_token)
    except FakturoidAuthError as exc:
        return ConnectionStatus(
            success=False, needs_credentials=True, error=str(exc), server_credentials=server_credentials
        )
    except _GROUP_ERRORS as exc:
        return ConnectionStatus(success=False, error=str(exc), server_credentials=server_credentials)
    return ConnectionStatus(success=True, account=account, server_credentials=server_credentials)

