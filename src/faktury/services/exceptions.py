from __future__ import annotations


class MalformedInputError(ValueError):
    """The request input as a whole is unusable (bad workbook, empty batch, broken drafts)."""


class AmbiguousHeaderError(MalformedInputError):
    """More than one spreadsheet column matches the same ledger field."""

    def __init__(self, field_name: str, headers: list[str]) -> None:
        super().__init__(
            f"Sloupec pro '{field_name}' není jednoznačný: {', '.join(headers)}"
        )
        self.field_name = field_name
        self.headers = headers


class FakturoidError(RuntimeError):
    """Fakturoid API returned an error response."""

    def __init__(
        self, message: str, status_code: int | None = None, response: object = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class FakturoidAuthError(FakturoidError):
    """Credentials were rejected; the caller has to supply working ones."""


class MissingCredentialsError(FakturoidAuthError):
    """Neither the server nor the caller provided Fakturoid credentials."""
