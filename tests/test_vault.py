"""Tests for the placeholder vault, restoration, streaming and the mapping store."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from cryptography.fernet import Fernet

from medredact.errors import StoreError
from medredact.store import MappingStore, key_path
from medredact.streaming import StreamingRestorer
from medredact.types import Category, EntitySpan, LAYER_MODEL, LAYER_RULES
from medredact.vault import PlaceholderVault, make_token, place_holders, restore


def span(label, text, surface, layer=LAYER_RULES):
    start = text.index(surface)
    return EntitySpan(label, surface, start, start + len(surface), layer)


# ── Vault ────────────────────────────────────────────────────────────

def test_tokens_are_zero_based_per_label():
    v = PlaceholderVault()
    assert v.get_or_create_token(Category.PERSON, "Mary") == "{{PERSON_0}}"
    assert v.get_or_create_token(Category.PERSON, "Bob") == "{{PERSON_1}}"
    assert v.get_or_create_token(Category.ORG, "Mercy") == "{{ORG_0}}"


def test_same_value_same_token():
    v = PlaceholderVault()
    t1 = v.get_or_create_token(Category.PERSON, "Mary")
    t2 = v.get_or_create_token(Category.PERSON, "Mary")
    assert t1 == t2
    assert v.size == 1


def test_same_value_different_label():
    v = PlaceholderVault()
    assert v.get_or_create_token(Category.PERSON, "Jordan") == "{{PERSON_0}}"
    assert v.get_or_create_token(Category.LOCATION, "Jordan") == "{{LOCATION_0}}"


def test_numbering_follows_text_order():
    text = "Mary met Bob"
    spans = [span(Category.PERSON, text, "Bob"), span(Category.PERSON, text, "Mary")]
    out, mapping = place_holders(spans, text)
    assert out == "{{PERSON_0}} met {{PERSON_1}}"
    assert mapping == {"{{PERSON_0}}": "Mary", "{{PERSON_1}}": "Bob"}


def test_repeated_value_reuses_token():
    text = "Mary called. Mary left."
    spans = [
        EntitySpan(Category.PERSON, "Mary", 0, 4, LAYER_MODEL),
        EntitySpan(Category.PERSON, "Mary", 13, 17, LAYER_MODEL),
    ]
    out, mapping = place_holders(spans, text)
    assert out == "{{PERSON_0}} called. {{PERSON_0}} left."
    assert len(mapping) == 1


def test_from_mapping_continues_numbering():
    v = PlaceholderVault.from_mapping({"{{PERSON_0}}": "Mary", "{{PERSON_1}}": "Bob", "junk": "x"})
    assert v.get_or_create_token(Category.PERSON, "Mary") == "{{PERSON_0}}"
    assert v.get_or_create_token(Category.PERSON, "Ann") == "{{PERSON_2}}"
    assert v.lookup_token("junk") is None


def test_clear():
    v = PlaceholderVault()
    v.get_or_create_token(Category.PHONE, "555-123-4567")
    v.clear()
    assert v.size == 0
    assert v.get_or_create_token(Category.PHONE, "555-000-0000") == "{{PHONE_0}}"


def test_tokens_already_in_text_are_skipped():
    text = "Chart says {{PERSON_0}}; Dr. Wu agreed."
    out, mapping = place_holders([span(Category.PERSON, text, "Wu")], text)
    assert out == "Chart says {{PERSON_0}}; Dr. {{PERSON_1}} agreed."
    assert mapping == {"{{PERSON_1}}": "Wu"}
    assert restore(out, mapping) == text


def test_existing_token_reissued_when_text_contains_it():
    v = PlaceholderVault()
    assert v.get_or_create_token(Category.PERSON, "Mary") == "{{PERSON_0}}"
    token = v.get_or_create_token(Category.PERSON, "Mary", avoid="re: {{PERSON_0}}")
    assert token == "{{PERSON_1}}"
    assert v.lookup_token(token) == "Mary"


# ── Restore ──────────────────────────────────────────────────────────

def test_restore_round_trip():
    text = "Call Dr. Wu at 555-123-4567"
    spans = [span(Category.PERSON, text, "Wu"), span(Category.PHONE, text, "555-123-4567")]
    out, mapping = place_holders(spans, text)
    assert out == "Call Dr. {{PERSON_0}} at {{PHONE_0}}"
    assert restore(out, mapping) == text


def test_restore_leaves_unknown_tokens():
    assert restore("{{PERSON_0}} and {{ORG_9}}", {"{{PERSON_0}}": "Mary"}) == "Mary and {{ORG_9}}"


def test_restore_double_digit_tokens():
    mapping = {make_token("PERSON", i): f"Name{i}" for i in range(12)}
    assert restore("{{PERSON_1}} {{PERSON_10}} {{PERSON_11}}", mapping) == "Name1 Name10 Name11"


def test_restore_is_idempotent():
    mapping = {"{{PERSON_0}}": "Mary"}
    once = restore("Hi {{PERSON_0}}", mapping)
    assert restore(once, mapping) == once


# ── Streaming ────────────────────────────────────────────────────────

def test_streaming_split_token():
    r = StreamingRestorer({"{{PERSON_0}}": "Mary"})
    assert r.feed("Hello {{PER") == "Hello "
    assert r.feed("SON_0}} and") == "Mary and"
    assert r.flush() == ""


def test_streaming_split_at_closing_brace():
    r = StreamingRestorer({"{{ORG_0}}": "Mercy General"})
    out = r.feed("at {{ORG_0}")
    out += r.feed("} today")
    assert out == "at Mercy General today"


def test_streaming_plain_braces_pass_through():
    r = StreamingRestorer({})
    assert r.feed("a {b} c") == "a {b} c"
    assert r.feed("{{not a token}}") == "{{not a token}}"


def test_streaming_flush_releases_partial():
    r = StreamingRestorer({"{{PERSON_0}}": "Mary"})
    assert r.feed("end {") == "end "
    assert r.flush() == "{"


def test_streaming_unknown_token_kept():
    r = StreamingRestorer({})
    assert r.feed("{{ORG_3}} ok") == "{{ORG_3}} ok"


# ── Mapping store ────────────────────────────────────────────────────

def test_store_save_load(tmp_path):
    store = MappingStore(tmp_path / "sub" / "m.db")
    store.save("visit-1", {"{{PERSON_0}}": "Mary"})
    store.save("visit-1", {"{{PHONE_0}}": "555-123-4567"})
    store.save("visit-2", {"{{PERSON_0}}": "Bob"})
    try:
        assert store.load("visit-1") == {"{{PERSON_0}}": "Mary", "{{PHONE_0}}": "555-123-4567"}
        assert store.load("visit-2") == {"{{PERSON_0}}": "Bob"}
        assert store.list_conversations() == ["visit-1", "visit-2"]
    finally:
        store.close()


def test_store_persists_across_connections(tmp_path):
    path = tmp_path / "m.db"
    store = MappingStore(path)
    store.save("c", {"{{PERSON_0}}": "Mary"})
    store.close()

    store = MappingStore(path)
    try:
        vault = store.load_vault("c")
        assert vault.get_or_create_token(Category.PERSON, "Ann") == "{{PERSON_1}}"
    finally:
        store.close()


def test_store_delete():
    store = MappingStore(":memory:")
    store.save("c", {"{{PERSON_0}}": "Mary"})
    store.delete("c")
    assert store.load("c") == {}
    assert store.list_conversations() == []
    store.close()


def test_store_encrypts_originals(tmp_path):
    path = tmp_path / "m.db"
    store = MappingStore(path)
    store.save("visit-1", {"{{PERSON_0}}": "Mary Jones", "{{PHONE_0}}": "555-123-4567"})
    store.close()
    raw = path.read_bytes()
    assert b"Mary Jones" not in raw
    assert b"555-123-4567" not in raw
    assert b"{{PERSON_0}}" in raw


def test_store_generates_private_key_file(tmp_path):
    path = tmp_path / "m.db"
    MappingStore(path).close()
    key_file = key_path(path)
    assert key_file.name == "m.db.key"
    assert key_file.exists()
    if os.name == "posix":
        assert key_file.stat().st_mode & 0o077 == 0


def test_store_explicit_key(tmp_path):
    path = tmp_path / "m.db"
    key = Fernet.generate_key()
    store = MappingStore(path, key=key)
    store.save("c", {"{{PERSON_0}}": "Mary"})
    store.close()
    assert not key_path(path).exists()

    store = MappingStore(path, key=key.decode())
    try:
        assert store.load("c") == {"{{PERSON_0}}": "Mary"}
    finally:
        store.close()


def test_store_wrong_key(tmp_path):
    path = tmp_path / "m.db"
    store = MappingStore(path)
    store.save("c", {"{{PERSON_0}}": "Mary"})
    store.close()

    store = MappingStore(path, key=Fernet.generate_key())
    try:
        with pytest.raises(StoreError):
            store.load("c")
    finally:
        store.close()


def test_store_invalid_key():
    with pytest.raises(StoreError):
        MappingStore(":memory:", key="not-a-key")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
