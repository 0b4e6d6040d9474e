from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

from faktury.services.exceptions import MalformedInputError

APP_NAME = "faktury-export"

KEYRING_SERVICE = "faktury-export"
KEYRING_USERNAME = "fakturoid-client-secret"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Returns None if only platformdirs would resolve and the directory does not
    exist yet.
    """
    from_env = os.environ.get("FAKTURY_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes.

    Priority: 1) FAKTURY_CONFIG_DIR, 2) dev repo layout, 3) platformdirs.
    """
    from_env = os.environ.get("FAKTURY_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    # Development layout: src/faktury/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    return Path(platformdirs.user_config_dir(APP_NAME))


FAKTUROID_API_URL = "https://app.fakturoid.cz/api/v3"
FAKTUROID_TIMEOUT = 30
DEFAULT_CONTACT_EMAIL = "noreply@example.com"

DEFAULT_SHEET_NAME = "Databáza klientov"

EXPORT_NS = "http://munipolis.cz/invoices"


# --- Keyring helpers ---


def _get_keyring_secret() -> str | None:
    """Try to get the Fakturoid client secret from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def _set_keyring_secret(secret: str) -> bool:
    """Store the client secret in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, secret)
        return True
    except Exception:
        return False


def _delete_keyring_secret() -> bool:
    """Remove the client secret from the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        return True
    except Exception:
        return False


# --- Fakturoid credentials ---


@dataclass(frozen=True)
class Credentials:
    client_id: str
    client_secret: str
    slug: str
    email: str = DEFAULT_CONTACT_EMAIL

    @classmethod
    def from_dict(cls, d: dict) -> Credentials | None:
        """Build credentials from a user-supplied mapping; None when incomplete."""
        client_id = d.get("client_id")
        client_secret = d.get("client_secret")
        slug = d.get("slug")
        if not (client_id and client_secret and slug):
            return None
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            slug=slug,
            email=d.get("email") or DEFAULT_CONTACT_EMAIL,
        )


def get_server_credentials() -> Credentials | None:
    """Return credentials held by this host (env vars, client secret also from keyring).

    Returns None unless client id, secret and account slug are all present.
    """
    secret = os.environ.get("FAKTUROID_CLIENT_SECRET") or _get_keyring_secret()
    return Credentials.from_dict(
        {
            "client_id": os.environ.get("FAKTUROID_CLIENT_ID"),
            "client_secret": secret,
            "slug": os.environ.get("FAKTUROID_SLUG"),
            "email": os.environ.get("FAKTUROID_EMAIL"),
        }
    )


def resolve_credentials(supplied: Credentials | None = None) -> tuple[Credentials | None, bool]:
    """Pick the credentials to use for a request.

    The server-held set always wins when complete; otherwise the supplied
    one is used. Returns ``(credentials, from_server)``.
    """
    server = get_server_credentials()
    if server is not None:
        return server, True
    return supplied, False


# --- YAML settings ---


_SETTING_CHOICES = {
    "grouping": ("inclusive", "strict"),
    "billability": ("lenient", "strict"),
    "header_ambiguity": ("first", "strict"),
}


def _choice(d: dict, key: str, default: str) -> str:
    value = str(d.get(key, default)).strip().lower()
    allowed = _SETTING_CHOICES[key]
    if value not in allowed:
        raise MalformedInputError(
            f"Neplatná hodnota '{d.get(key)}' pro '{key}' (povoleno: {', '.join(allowed)})"
        )
    return value


@dataclass(frozen=True)
class Settings:
    sheet_name: str = DEFAULT_SHEET_NAME
    grouping: str = "inclusive"
    billability: str = "lenient"
    header_ambiguity: str = "first"
    due_in_days: int = 14
    include_period_in_name: bool = True
    language: str = "cz"
    unit_name: str = "ks"
    allowed_countries: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, d: dict) -> Settings:
        """Create Settings from a YAML-loaded dict, applying defaults for missing keys.

        Raises MalformedInputError for unknown policy names or a non-numeric
        due period.
        """
        if not isinstance(d, dict):
            raise MalformedInputError("Nastavení musí být slovník klíč: hodnota")
        invoice = d.get("invoice", {}) or {}
        if not isinstance(invoice, dict):
            raise MalformedInputError("Sekce 'invoice' v nastavení musí být slovník")
        try:
            due_in_days = int(invoice.get("due_in_days", 14))
        except (TypeError, ValueError):
            raise MalformedInputError(
                f"Neplatná hodnota '{invoice.get('due_in_days')}' pro 'invoice.due_in_days'"
            ) from None
        return cls(
            sheet_name=d.get("sheet_name", DEFAULT_SHEET_NAME),
            grouping=_choice(d, "grouping", "inclusive"),
            billability=_choice(d, "billability", "lenient"),
            header_ambiguity=_choice(d, "header_ambiguity", "first"),
            due_in_days=due_in_days,
            include_period_in_name=bool(invoice.get("include_period_in_name", True)),
            language=invoice.get("language", "cz"),
            unit_name=invoice.get("unit_name", "ks"),
            allowed_countries=tuple(
                str(c).strip().upper() for c in d.get("allowed_countries") or ()
            ),
        )


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def load_settings() -> Settings:
    """Load settings from config/settings.yaml, or defaults when the file is absent."""
    path = get_config_dir() / "settings.yaml"
    if not path.is_file():
        return Settings()
    try:
        data = load_yaml(path)
    except yaml.YAMLError as exc:
        raise MalformedInputError(f"Soubor {path} není platný YAML: {exc}") from exc
    return Settings.from_dict(data)
