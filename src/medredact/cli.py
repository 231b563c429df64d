"""CLI interface for medredact.

Usage:
    # Tag mode (stdin: transcript, stdout: JSON with tagged text + metrics)
    echo 'Patient John Smith, phone 555-123-4567' | medredact redact

    # Reversible mode; the mapping is saved locally under the conversation id
    echo 'Patient John Smith, phone 555-123-4567' | \
        medredact reversible --conversation visit-42

    # Restore placeholders (stdin: text with {{LABEL_n}} tokens)
    echo 'S: {{PERSON_0}} reports...' | medredact restore --conversation visit-42

    # Redact, draft a SOAP note in the cloud, restore locally
    medredact note --conversation visit-42 < transcript.txt

    # List / forget stored conversations
    medredact conversations
    medredact forget --conversation visit-42

Mappings are persisted in a local SQLite file and never printed unless
--show-mapping is given.
"""

from __future__ import annotations
import argparse
import json
import logging
import sys

from .config import create_redactor, load_config, load_from_yaml
from .errors import StoreError
from .middleware import RedactMiddleware
from .notes import NoteGenerationError, SoapNoteGenerator
from .store import MappingStore
from .types import RedactionResult
from .vault import restore


def _config(args: argparse.Namespace) -> dict:
    cfg = load_from_yaml(args.config) if args.config else load_config({})
    if args.no_llm:
        cfg["llm_enabled"] = False
    if args.db:
        cfg["store_path"] = args.db
    return cfg


def _open_store(cfg: dict) -> MappingStore:
    return MappingStore(cfg["store_path"], key=cfg["store_key"])


def _entities(result: RedactionResult) -> list[dict]:
    return [
        {"label": e.label.value, "start": e.start, "end": e.end, "layer": e.layer}
        for e in result.entities
    ]


def cmd_redact(args: argparse.Namespace) -> None:
    """Tag PII in plain text from stdin."""
    redactor = create_redactor(_config(args))
    result = redactor.redact(sys.stdin.read())
    output = {
        "text": result.output_text,
        "entities": _entities(result),
        "metrics": result.metrics.as_dict(),
    }
    json.dump(output, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_reversible(args: argparse.Namespace) -> None:
    """Replace PII with placeholders and store the mapping locally."""
    cfg = _config(args)
    redactor = create_redactor(cfg)
    store = _open_store(cfg)
    try:
        vault = store.load_vault(args.conversation)
        result = redactor.redact_reversible(sys.stdin.read(), vault)
        store.save(args.conversation, result.mapping)
    finally:
        store.close()

    output = {
        "text": result.output_text,
        "entities": _entities(result),
        "metrics": result.metrics.as_dict(),
    }
    if args.show_mapping:
        output["mapping"] = result.mapping
    json.dump(output, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


def cmd_restore(args: argparse.Namespace) -> None:
    """Restore placeholders in text from stdin."""
    store = _open_store(_config(args))
    try:
        mapping = store.load(args.conversation)
    finally:
        store.close()
    sys.stdout.write(restore(sys.stdin.read(), mapping))


def cmd_note(args: argparse.Namespace) -> None:
    """Draft a SOAP note from a transcript on stdin."""
    cfg = _config(args)
    if not cfg["notes_api_key"]:
        sys.stderr.write("No note service API key (set MEDREDACT_NOTES_API_KEY)\n")
        sys.exit(2)

    store = _open_store(cfg)
    try:
        mw = RedactMiddleware(
            redactor=create_redactor(cfg),
            vault=store.load_vault(args.conversation),
            notes=SoapNoteGenerator(
                api_key=cfg["notes_api_key"],
                base_url=cfg["notes_base_url"],
                model=cfg["notes_model"],
            ),
        )
        try:
            note = mw.draft_note(sys.stdin.read())
        except NoteGenerationError as e:
            sys.stderr.write(f"{e}\n")
            sys.exit(1)
        finally:
            store.save(args.conversation, mw.mapping)
    finally:
        store.close()

    if mw.last_result is not None and not mw.last_result.llm_enabled:
        sys.stderr.write("Note: only deterministic redaction ran (model unavailable)\n")
    sys.stdout.write(note)
    sys.stdout.write("\n")


def cmd_conversations(args: argparse.Namespace) -> None:
    """List conversations with stored mappings."""
    store = _open_store(_config(args))
    try:
        json.dump(store.list_conversations(), sys.stdout)
    finally:
        store.close()
    sys.stdout.write("\n")


def cmd_forget(args: argparse.Namespace) -> None:
    """Delete the stored mapping of a conversation."""
    store = _open_store(_config(args))
    try:
        store.delete(args.conversation)
    finally:
        store.close()
    sys.stderr.write(f"Forgot conversation {args.conversation}\n")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="medredact",
        description="Medical PII redaction for clinical transcripts",
    )
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--db", default=None, help="SQLite mapping store path")
    parser.add_argument("--no-llm", action="store_true", help="Rules and dictionary only")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("redact", help="Tag PII (stdin)")
    p = sub.add_parser("reversible", help="Replace PII with placeholders (stdin)")
    p.add_argument("--conversation", default="default", help="Conversation ID")
    p.add_argument("--show-mapping", action="store_true", help="Include the mapping in the output")
    p = sub.add_parser("restore", help="Restore placeholders (stdin)")
    p.add_argument("--conversation", default="default", help="Conversation ID")
    p = sub.add_parser("note", help="Draft a SOAP note (stdin)")
    p.add_argument("--conversation", default="default", help="Conversation ID")
    sub.add_parser("conversations", help="List stored conversations")
    p = sub.add_parser("forget", help="Delete a conversation's mapping")
    p.add_argument("--conversation", required=True, help="Conversation ID")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    cmds = {
        "redact": cmd_redact,
        "reversible": cmd_reversible,
        "restore": cmd_restore,
        "note": cmd_note,
        "conversations": cmd_conversations,
        "forget": cmd_forget,
    }
    try:
        cmds[args.command](args)
    except StoreError as e:
        sys.stderr.write(f"{e}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
