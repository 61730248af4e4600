"""
Vehicle Passport CLI

Usage:
    passport-cli ingest --in DIR --out DIR      Informes DEKRA (PDF) → drafts JSON
    passport-cli seal --in F --key PEM          Segellar un draft
    passport-cli verify --in F --pub PEM        Verificar un passaport segellat
    passport-cli validate draft|sealed F        Validar contra l'esquema
    passport-cli keygen --out DIR               Generar parell de claus

Codis de sortida de verify: 0 vàlid, 3 invàlid, 2 entrada incorrecta.
"""
import argparse
import json
import sys
from pathlib import Path
from vehicle_passport.config import settings
from vehicle_passport.errors import BadInputError, CryptoError, DraftValidationError, VinMismatchError
from vehicle_passport.models.passport import validate_draft, validate_sealed
from vehicle_passport.parsers.dekra_parser import DraftOptions, compute_coverage, dekra_parser
from vehicle_passport.services.pdf_loader import list_pdfs, load_pdf
from vehicle_passport.services.sealer import generate_keypair, seal_passport, verify_sealed

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2
EXIT_INVALID = 3


def _read_json(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        raise BadInputError(f"No s'ha pogut llegir {path}: {e}") from e
    if not isinstance(data, dict):
        raise BadInputError(f"{path} no conté un objecte JSON")
    return data


def _write_json(data: dict, path: str | None) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if path:
        Path(path).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


def _print_errors(errors) -> None:
    for item in errors:
        print(f"  [{item.code}] {item.field or '-'}: {item.message}")


def cmd_ingest(args):
    """Processa tots els PDFs d'una carpeta."""
    folder = Path(args.input)
    if not folder.is_dir():
        print(f"Error: carpeta no trobada: {folder}")
        return EXIT_BAD_INPUT

    pdfs = list_pdfs(str(folder), recursive=not args.flat)
    if not pdfs:
        print(f"Cap PDF a {folder}")
        return EXIT_BAD_INPUT

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    options = DraftOptions(lot_id=args.lot_id, site_hint=args.site_hint, captured_by=args.captured_by)

    failures = 0
    for pdf_path in pdfs:
        name = Path(pdf_path).name
        try:
            loaded = load_pdf(pdf_path)
            if loaded.is_likely_scanned:
                print(f"  {name}: SKIP (probablement escanejat)")
                continue
            draft = dekra_parser.map_to_draft(loaded.text, options)
        except (BadInputError, VinMismatchError, DraftValidationError) as e:
            failures += 1
            print(f"  {name}: ERROR {e.reason.value} - {e}")
            continue

        errors = validate_draft(draft)
        if errors:
            failures += 1
            print(f"  {name}: INVALID")
            _print_errors(errors)
            continue

        target = out_dir / f"{draft['vin']}.draft.json"
        _write_json(draft, str(target))
        print(f"  {name}: {draft['vin']} coverage={compute_coverage(draft)} → {target}")

    print(f"{len(pdfs)} PDFs, {failures} errors")
    return EXIT_FAILED if failures else EXIT_OK


def cmd_seal(args):
    try:
        draft = _read_json(args.input)
        key_pem = Path(args.key).read_bytes() if Path(args.key).is_file() else None
        sealed = seal_passport(draft, key_pem, key_id=args.key_id or settings.seal_key_id)
    except DraftValidationError as e:
        print(f"Error: {e}")
        _print_errors(e.errors)
        return EXIT_FAILED
    except (BadInputError, CryptoError) as e:
        print(f"Error: {e.reason.value} - {e}")
        return EXIT_BAD_INPUT

    _write_json(sealed, args.output)
    return EXIT_OK


def cmd_verify(args):
    try:
        sealed = _read_json(args.input)
        pub_pem = Path(args.pub).read_bytes() if args.pub else None
        result = verify_sealed(sealed, pub_pem)
    except OSError as e:
        print(f"Error: {e}")
        return EXIT_BAD_INPUT
    except (BadInputError, CryptoError) as e:
        print(f"Error: {e.reason.value} - {e}")
        return EXIT_BAD_INPUT

    print(json.dumps(result.model_dump(), indent=2))
    return EXIT_OK if result.valid else EXIT_INVALID


def cmd_validate(args):
    try:
        record = _read_json(args.file)
    except BadInputError as e:
        print(f"Error: {e}")
        return EXIT_BAD_INPUT

    errors = validate_draft(record) if args.kind == "draft" else validate_sealed(record)
    if errors:
        print(f"{args.file}: INVALID ({len(errors)})")
        _print_errors(errors)
        return EXIT_FAILED
    print(f"{args.file}: OK")
    return EXIT_OK


def cmd_keygen(args):
    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    private_path = out_dir / "seal_private.pem"
    public_path = out_dir / "seal_public.pem"
    if private_path.exists() and not args.force:
        print(f"Error: {private_path} ja existeix (usa --force)")
        return EXIT_BAD_INPUT

    private_pem, public_pem = generate_keypair(args.algorithm)
    private_path.write_bytes(private_pem)
    private_path.chmod(0o600)
    public_path.write_bytes(public_pem)
    print(f"Clau privada: {private_path}")
    print(f"Clau pública: {public_path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="passport-cli",
        description="Vehicle Passport - ingesta DEKRA, segellat i verificació",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {settings.app_version}")
    subparsers = parser.add_subparsers(dest="command", help="Ordres disponibles")

    ingest_parser = subparsers.add_parser("ingest", help="PDFs DEKRA → drafts JSON")
    ingest_parser.add_argument("--in", dest="input", required=True, help="Carpeta amb PDFs")
    ingest_parser.add_argument("--out", dest="output", required=True, help="Carpeta de sortida")
    ingest_parser.add_argument("--lot-id", dest="lot_id")
    ingest_parser.add_argument("--site-hint", dest="site_hint")
    ingest_parser.add_argument("--captured-by", dest="captured_by")
    ingest_parser.add_argument("--flat", action="store_true", help="No entrar a subcarpetes")

    seal_parser = subparsers.add_parser("seal", help="Segellar un draft")
    seal_parser.add_argument("--in", dest="input", required=True)
    seal_parser.add_argument("--key", required=True, help="Clau privada PEM")
    seal_parser.add_argument("--key-id", dest="key_id")
    seal_parser.add_argument("--out", dest="output", help="Fitxer de sortida (per defecte stdout)")

    verify_parser = subparsers.add_parser("verify", help="Verificar un passaport segellat")
    verify_parser.add_argument("--in", dest="input", required=True)
    verify_parser.add_argument("--pub", help="Clau pública PEM")

    validate_parser = subparsers.add_parser("validate", help="Validar contra l'esquema")
    validate_parser.add_argument("kind", choices=["draft", "sealed"])
    validate_parser.add_argument("file")

    keygen_parser = subparsers.add_parser("keygen", help="Generar parell de claus")
    keygen_parser.add_argument("--out", dest="output", default=".")
    keygen_parser.add_argument("--algorithm", choices=["ec", "rsa"], default="ec")
    keygen_parser.add_argument("--force", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    commands = {
        "ingest": cmd_ingest,
        "seal": cmd_seal,
        "verify": cmd_verify,
        "validate": cmd_validate,
        "keygen": cmd_keygen,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
