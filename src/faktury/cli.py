from __future__ import annotations

import argparse
import getpass
import logging
import stat
import sys
from decimal import Decimal, InvalidOperation
from importlib.resources import files
from pathlib import Path

import requests.exceptions

from faktury.services.exceptions import FakturoidAuthError, FakturoidError, MalformedInputError

logger = logging.getLogger(__name__)


def _check_keyring_available() -> bool:
    """Check if keyring is installed with a usable backend."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


def _upsert_env_var(env_file: Path, key: str, value: str) -> None:
    """Set or update a key=value pair in a .env file, creating it if needed.

    Uses dotenv.set_key for proper quoting (handles #, spaces, etc.).
    """
    from dotenv import set_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    if not env_file.exists():
        env_file.touch()
    set_key(str(env_file), key, value)


def _remove_env_var(env_file: Path, key: str) -> None:
    """Remove a key from a .env file if present."""
    from dotenv import unset_key

    if env_file.exists():
        unset_key(str(env_file), key)


def _warn_open_permissions(env_file: Path) -> None:
    """Warn if .env file has group/other read permissions (Unix only)."""
    try:
        mode = env_file.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            print(f"\n  UPOZORNĚNÍ: {env_file} je čitelný i pro ostatní uživatele.")
            print("  Doporučení: chmod 600", env_file)
    except OSError:
        pass


def _setup_credentials(config_dir: Path) -> bool:
    """Interactive Fakturoid credentials setup. Returns True if credentials were stored."""
    print()
    print("Nastavení přístupu k Fakturoidu")
    print("───────────────────────────────")
    print()

    slug = input("Slug účtu (vaše-firma z app.fakturoid.cz/vaše-firma; prázdné = přeskočit): ").strip()
    if not slug:
        print("  Nastavení přístupu přeskočeno.")
        return False
    client_id = input("Client ID: ").strip()
    client_secret = getpass.getpass("Client Secret: ")
    email = input("Kontaktní e-mail (User-Agent): ").strip()

    from faktury.config import Credentials
    from faktury.services.submission import check_connection

    print()
    print("Ověřuji připojení…")
    status = check_connection(
        Credentials(client_id=client_id, client_secret=client_secret, slug=slug, email=email or "noreply@example.com")
    )
    if not status.success:
        print(f"  CHYBA: Připojení selhalo: {status.error}")
        print("  Nastavení přístupu přerušeno.")
        return False
    print(f"  Účet: {(status.account or {}).get('name', slug)}")

    env_file = config_dir / ".env"
    _upsert_env_var(env_file, "FAKTUROID_SLUG", slug)
    _upsert_env_var(env_file, "FAKTUROID_CLIENT_ID", client_id)
    if email:
        _upsert_env_var(env_file, "FAKTUROID_EMAIL", email)

    print()
    print("Kam uložit Client Secret?")

    keyring_ok = _check_keyring_available()
    options: list[tuple[str, str]] = []
    if keyring_ok:
        options.append(("1", "Systémová klíčenka (doporučeno)"))
    options.append(("2", "Soubor .env v konfiguračním adresáři"))
    options.append(("3", "Neukládat (nastavit ručně)"))

    for num, label in options:
        print(f"  {num}. {label}")

    if not keyring_ok:
        print()
        print("  Poznámka: systémová klíčenka není k dispozici.")

    print()
    valid_choices = {num for num, _ in options}
    choice = ""
    while choice not in valid_choices:
        choice = input(f"Volba [{'/'.join(sorted(valid_choices))}]: ").strip()

    from faktury.config import _delete_keyring_secret

    if choice == "1" and keyring_ok:
        from faktury.config import _set_keyring_secret

        if _set_keyring_secret(client_secret):
            print("  Client Secret uložen do systémové klíčenky.")
            # Remove from .env to avoid stale secret on disk
            _remove_env_var(env_file, "FAKTUROID_CLIENT_SECRET")
        else:
            print("  CHYBA: Uložení do klíčenky selhalo. Ukládám do .env.")
            _upsert_env_var(env_file, "FAKTUROID_CLIENT_SECRET", client_secret)
            _warn_open_permissions(env_file)
    elif choice == "2":
        _upsert_env_var(env_file, "FAKTUROID_CLIENT_SECRET", client_secret)
        print(f"  Client Secret uložen do {env_file}")
        _warn_open_permissions(env_file)
        # Remove from keyring to avoid stale secret
        _delete_keyring_secret()
    else:
        _remove_env_var(env_file, "FAKTUROID_CLIENT_SECRET")
        _delete_keyring_secret()
        print("  Client Secret neuložen.")
        print("  Nastavte FAKTUROID_CLIENT_SECRET v prostředí nebo v .env.")

    return True


def _init_config() -> int:
    """Copy the bundled settings template to the user's config directory."""
    from faktury.config import get_config_dir

    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    dest = config_dir / "settings.yaml"
    if dest.exists():
        print(f"  již existuje: {dest}")
    else:
        src = files("faktury") / "templates" / "settings.yaml.example"
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  vytvořeno: {dest}")

    print()
    print(f"Konfigurace: {config_dir}")
    print()
    try:
        answer = input("Nastavit přístup k Fakturoidu nyní? [A/n]: ").strip().lower()
        if answer in ("", "a", "ano", "y", "yes"):
            _setup_credentials(config_dir)
    except (EOFError, KeyboardInterrupt):
        print()
    return 0


def _parse_row_ids(value: str) -> set[int]:
    """Parse "1,2,5-8" into {1, 2, 5, 6, 7, 8}."""
    ids: set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = part.split("-", 1)
                ids.update(range(int(start), int(end) + 1))
            else:
                ids.add(int(part))
        except ValueError:
            raise argparse.ArgumentTypeError(f"Neplatné číslo řádku: '{part}'") from None
    return ids


def _parse_rate(value: str) -> Decimal:
    try:
        rate = Decimal(value.replace(",", "."))
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Neplatná sazba DPH: '{value}'") from None
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise argparse.ArgumentTypeError("Sazba DPH musí být mezi 0 a 100")
    return rate


def _cmd_preview(args: argparse.Namespace) -> int:
    from faktury.config import load_settings
    from faktury.services.assembler import InvoiceOptions, build_preview, totals_by_currency
    from faktury.services.billability import BillabilityPolicy
    from faktury.services.drafts import save_drafts
    from faktury.services.field_resolver import HeaderAmbiguity
    from faktury.services.grouping import GroupingPolicy, select_records
    from faktury.services.ingestion import load_ledger
    from faktury.utils.formatters import format_money

    settings = load_settings()
    ledger = load_ledger(
        Path(args.ledger),
        sheet_name=args.sheet or settings.sheet_name,
        billability=BillabilityPolicy(settings.billability),
        ambiguity=HeaderAmbiguity(settings.header_ambiguity),
    )
    print(f"List: {ledger.sheet_name} ({len(ledger.records)} řádků, {ledger.billable_count} lze fakturovat)")

    selected = select_records(ledger.records, args.rows, billable_only=not args.all)
    if not selected:
        print("Nebyl vybrán žádný řádek.")
        return 1

    options = InvoiceOptions(
        include_period_in_name=settings.include_period_in_name and not args.no_period,
        vat_rate=args.vat_rate,
        due_in_days=args.due_in_days if args.due_in_days is not None else settings.due_in_days,
        currency=args.currency,
        unit_name=settings.unit_name,
    )
    policy = GroupingPolicy(args.grouping or settings.grouping)
    drafts = build_preview(ledger.records, options, policy, selected_only=True)

    print()
    for draft in drafts:
        ico = draft.tax_id or "BEZ IČO"
        print(f"{draft.client_name or '?'}  (IČO: {ico} | {draft.country or '?'})")
        print(f"  DUZP: {draft.taxable_fulfillment_due.isoformat()}  položek: {draft.item_count}")
        for line in draft.lines:
            price = format_money(line.effective_price, draft.currency)
            print(f"    - {line.effective_name}: {price}, DPH {line.effective_vat_rate}%")
        print(f"  Celkem bez DPH: {format_money(draft.total_without_vat, draft.currency)}")

    print()
    print(f"Celkem faktur: {len(drafts)}")
    for currency, total in totals_by_currency(drafts).items():
        print(f"  {format_money(total, currency)}")

    if args.output:
        path = save_drafts(Path(args.output), drafts)
        print()
        print(f"Návrhy uloženy do {path}")
    return 0


def _cmd_export_xml(args: argparse.Namespace) -> int:
    from faktury.services.drafts import load_drafts
    from faktury.services.xml_export import ExportOptions, to_export_document

    drafts = load_drafts(Path(args.drafts))
    document = to_export_document(drafts, ExportOptions(due_in_days=args.due_in_days))
    out = Path(args.output) if args.output else Path.cwd() / document.filename
    out.write_bytes(document.content)
    print(f"Exportováno {len(drafts)} faktur do {out}")
    return 0


def _credentials_from_args(args: argparse.Namespace):
    from faktury.config import Credentials, resolve_credentials

    supplied = Credentials.from_dict(
        {
            "client_id": args.client_id,
            "client_secret": args.client_secret,
            "slug": args.slug,
            "email": args.email,
        }
    )
    return resolve_credentials(supplied)


def _cmd_test_connection(args: argparse.Namespace) -> int:
    from faktury.services.submission import check_connection

    credentials, from_server = _credentials_from_args(args)
    status = check_connection(credentials, server_credentials=from_server)
    if status.success:
        account = status.account or {}
        source = "serverové" if status.server_credentials else "zadané"
        print(f"Připojeno k Fakturoidu: {account.get('name', credentials.slug)} ({source} údaje)")
        return 0
    if status.needs_credentials:
        print(f"Je potřeba zadat platné přístupové údaje: {status.error}")
    else:
        print(f"Připojení selhalo: {status.error}")
    return 1


def _cmd_check_subjects(args: argparse.Namespace) -> int:
    from faktury.services.drafts import load_drafts
    from faktury.services.submission import check_subjects

    drafts = load_drafts(Path(args.drafts))
    credentials, _ = _credentials_from_args(args)
    report = check_subjects([d.tax_id for d in drafts if d.tax_id], credentials)
    for result in report.results:
        if result.found:
            print(f"  OK   {result.tax_id}  {result.subject_name} (#{result.subject_id})")
        elif result.error:
            print(f"  CHYBA {result.tax_id}  {result.error}")
        else:
            print(f"  --   {result.tax_id}  nenalezen")
    print(f"Nalezeno: {report.found}, nenalezeno: {report.not_found}")
    return 0 if report.not_found == 0 else 1


def _cmd_submit(args: argparse.Namespace) -> int:
    from faktury.config import load_settings
    from faktury.services.drafts import load_drafts
    from faktury.services.submission import submit_invoices

    settings = load_settings()
    drafts = load_drafts(Path(args.drafts))
    if not drafts:
        raise MalformedInputError("Soubor s návrhy neobsahuje žádné faktury")

    if not args.yes:
        answer = input(
            f"Opravdu vytvořit {len(drafts)} faktur ve Fakturoidu? "
            "Faktury budou ve stavu 'k odeslání'. [a/N]: "
        )
        if answer.strip().lower() not in ("a", "ano", "y", "yes"):
            print("Zrušeno.")
            return 1

    credentials, _ = _credentials_from_args(args)
    report = submit_invoices(
        drafts,
        credentials,
        language=settings.language,
        allowed_countries=settings.allowed_countries or None,
    )
    for result in report.results:
        name = result.client_name or result.group_key
        if result.success:
            print(f"  OK    {name}: faktura {result.invoice_number} ({result.total} {result.currency})")
        else:
            print(f"  CHYBA {name}: {result.error}")
    print(f"Úspěšně: {report.success_count}, chyby: {report.error_count}")
    return 0 if report.error_count == 0 else 1


def _add_credential_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("Fakturoid (použijí se, jen pokud server nemá vlastní)")
    group.add_argument("--slug")
    group.add_argument("--client-id")
    group.add_argument("--client-secret")
    group.add_argument("--email")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="faktury-export",
        description="Evidence licencí → faktury (Fakturoid / XML export)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Podrobný výpis")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Vytvořit konfiguraci a nastavit přístup k Fakturoidu")

    p = sub.add_parser("preview", help="Načíst evidenci a připravit návrhy faktur")
    p.add_argument("ledger", help="Excel soubor s evidencí (.xlsx)")
    p.add_argument("-o", "--output", help="Uložit návrhy do JSON souboru")
    p.add_argument("--sheet", help="Název listu (výchozí dle nastavení)")
    p.add_argument("--rows", type=_parse_row_ids, help="Vybrané řádky, např. 1,2,5-8")
    p.add_argument("--all", action="store_true", help="Vybrat i řádky, které nelze fakturovat")
    p.add_argument("--grouping", choices=["strict", "inclusive"])
    p.add_argument("--vat-rate", type=_parse_rate, help="Sazba DPH (výchozí dle státu)")
    p.add_argument("--currency", help="Měna (výchozí dle státu)")
    p.add_argument("--due-in-days", type=int)
    p.add_argument("--no-period", action="store_true", help="Nepřidávat období do názvu položky")

    p = sub.add_parser("export-xml", help="Exportovat návrhy faktur do XML")
    p.add_argument("drafts", help="JSON soubor s návrhy")
    p.add_argument("-o", "--output", help="Cílový soubor (výchozí faktury-RRRR-MM-DD.xml)")
    p.add_argument("--due-in-days", type=int)

    p = sub.add_parser("check-subjects", help="Ověřit, že subjekty existují ve Fakturoidu")
    p.add_argument("drafts", help="JSON soubor s návrhy")
    _add_credential_args(p)

    p = sub.add_parser("submit", help="Vytvořit faktury ve Fakturoidu")
    p.add_argument("drafts", help="JSON soubor s návrhy")
    p.add_argument("-y", "--yes", action="store_true", help="Bez potvrzení")
    _add_credential_args(p)

    p = sub.add_parser("test-connection", help="Ověřit připojení k Fakturoidu")
    _add_credential_args(p)

    return parser


_COMMANDS = {
    "preview": _cmd_preview,
    "export-xml": _cmd_export_xml,
    "check-subjects": _cmd_check_subjects,
    "submit": _cmd_submit,
    "test-connection": _cmd_test_connection,
}


def main(argv: list[str] | None = None) -> int:
    """Entry point for the faktury-export CLI."""
    args = build_parser().parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init":
        return _init_config()

    try:
        return _COMMANDS[args.command](args)
    except MalformedInputError as exc:
        print(f"Chyba vstupu: {exc}")
    except FakturoidAuthError as exc:
        print(f"Je potřeba zadat platné přístupové údaje: {exc}")
    except (FakturoidError, requests.exceptions.RequestException) as exc:
        print(f"Fakturoid není dostupný: {exc}")
    except FileNotFoundError as exc:
        print(f"Soubor nenalezen: {exc.filename}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
