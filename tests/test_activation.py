# tests/test_activation.py

from __future__ import annotations

import random

import pytest

from loreweave.lorebook.activation import (
    build_scan_text,
    build_world_info_prompt,
    estimate_tokens,
    evaluate_logic,
    scan,
    scan_lorebooks,
)
from loreweave.lorebook.binding import bind_lorebook_to_chat
from loreweave.lorebook.formats import normalize_lorebook, parse_lorebook
from loreweave.lorebook.storage import LorebookStore
from loreweave.lorebook.types import (
    Lorebook,
    LorebookSettings,
    SelectiveLogic,
    SettingsOverrides,
    WorldInfoEntry,
)


class FixedRandom:
    """Random source that always returns the same draw."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


def make_book(*entries: WorldInfoEntry, book_id: str = "book", **settings) -> Lorebook:
    return Lorebook(id=book_id, name=book_id, entries=list(entries), settings=LorebookSettings(**settings))


def entry(uid: int, keys=("dragon",), content: str = "text", **kw) -> WorldInfoEntry:
    kw.setdefault("selective", False)
    return WorldInfoEntry(uid=uid, key=list(keys), content=content, **kw)


def uids(result) -> list[int]:
    return [a.uid for a in result.activated_entries]


# ============================================================================
# Selective logic
# ============================================================================

@pytest.mark.parametrize(
    ("logic", "primary", "secondary", "expected"),
    [
        (SelectiveLogic.AND_ANY, True, True, True),
        (SelectiveLogic.AND_ANY, True, False, False),
        (SelectiveLogic.AND_ANY, False, True, False),
        (SelectiveLogic.AND_ANY, False, False, False),
        (SelectiveLogic.AND_ALL, True, True, True),
        (SelectiveLogic.AND_ALL, True, False, False),
        (SelectiveLogic.AND_ALL, False, True, False),
        (SelectiveLogic.AND_ALL, False, False, False),
        (SelectiveLogic.NOT_ANY, True, True, False),
        (SelectiveLogic.NOT_ANY, True, False, True),
        (SelectiveLogic.NOT_ANY, False, True, False),
        (SelectiveLogic.NOT_ANY, False, False, False),
        (SelectiveLogic.NOT_ALL, True, True, True),
        (SelectiveLogic.NOT_ALL, True, False, True),
        (SelectiveLogic.NOT_ALL, False, True, False),
        (SelectiveLogic.NOT_ALL, False, False, False),
        (7, True, True, True),
        (7, True, False, True),
        (7, False, True, False),
        (7, False, False, False),
    ],
)
def test_logic_truth_table(logic, primary, secondary, expected) -> None:
    p = ["a"] if primary else []
    s = ["b"] if secondary else []
    assert evaluate_logic(logic, p, s, selective=True) is expected


@pytest.mark.parametrize("secondary", [True, False])
def test_non_selective_ignores_secondary(secondary) -> None:
    s = ["b"] if secondary else []
    assert evaluate_logic(SelectiveLogic.NOT_ANY, ["a"], s, selective=False) is True
    assert evaluate_logic(SelectiveLogic.AND_ANY, [], s, selective=False) is False


def test_selective_entries_through_scan() -> None:
    book = make_book(
        entry(1, ["castle"], keysecondary=["king"], selective=True, selective_logic=SelectiveLogic.AND_ANY),
        entry(2, ["castle"], keysecondary=["queen"], selective=True, selective_logic=SelectiveLogic.NOT_ANY),
        entry(3, ["castle"], keysecondary=["king"], selective=True, selective_logic=SelectiveLogic.NOT_ANY),
    )

    result = scan_lorebooks([(book, None)], "the king sits in the castle")

    assert uids(result) == [1, 2]
    assert result.activated_entries[0].matched_keys == ["castle", "king"]


# ============================================================================
# Scenarios
# ============================================================================

def test_non_selective_entry_activates() -> None:
    result = scan_lorebooks([(make_book(entry(0)), None)], "a dragon appears")
    assert uids(result) == [0]
    assert result.activated_entries[0].matched_keys == ["dragon"]


def test_and_any_without_secondary_match_does_not_activate() -> None:
    book = make_book(entry(0, keysecondary=["fire"], selective=True, selective_logic=SelectiveLogic.AND_ANY))
    assert uids(scan_lorebooks([(book, None)], "a dragon appears")) == []


def test_constant_entry_always_activates() -> None:
    book = make_book(entry(0, keys=["nowhere"], constant=True, selective=True, keysecondary=["x"]))
    result = scan_lorebooks([(book, None)], "unrelated text")

    assert uids(result) == [0]
    assert result.activated_entries[0].matched_keys == []


def test_probability_zero_never_activates() -> None:
    book = make_book(entry(0, probability=0, use_probability=True))
    for seed in range(20):
        assert uids(scan_lorebooks([(book, None)], "a dragon appears", rng=random.Random(seed))) == []
    assert uids(scan_lorebooks([(book, None)], "a dragon appears", rng=FixedRandom(0.0))) == []


def test_higher_order_first() -> None:
    book = make_book(entry(0, order=50), entry(1, order=200))
    result = scan_lorebooks([(book, None)], "a dragon appears")
    assert [a.order for a in result.activated_entries] == [200, 50]


# ============================================================================
# Probability
# ============================================================================

def test_probability_roll() -> None:
    book = make_book(entry(0, probability=50))

    assert uids(scan_lorebooks([(book, None)], "dragon", rng=FixedRandom(0.4))) == [0]
    assert uids(scan_lorebooks([(book, None)], "dragon", rng=FixedRandom(0.5))) == [0]
    assert uids(scan_lorebooks([(book, None)], "dragon", rng=FixedRandom(0.6))) == []


def test_probability_ignored_when_disabled() -> None:
    book = make_book(entry(0, probability=0, use_probability=False))
    assert uids(scan_lorebooks([(book, None)], "dragon", rng=FixedRandom(0.99))) == [0]


def test_seeded_scans_are_deterministic() -> None:
    book = make_book(*(entry(i, probability=50) for i in range(30)))

    first = scan_lorebooks([(book, None)], "dragon", rng=random.Random(42))
    second = scan_lorebooks([(book, None)], "dragon", rng=random.Random(42))

    assert uids(first) == uids(second)


# ============================================================================
# Token budget
# ============================================================================

def test_budget_skips_but_keeps_scanning() -> None:
    book = make_book(
        entry(0, content="a" * 40),  # 10 tokens
        entry(1, content="b" * 80),  # 20 tokens
        entry(2, content="c" * 20),  # 5 tokens
        token_budget=18,
    )

    result = scan_lorebooks([(book, None)], "dragon")

    assert sorted(uids(result)) == [0, 2]
    assert result.total_tokens == 15


def test_budget_total_runs_across_lorebooks() -> None:
    big = make_book(entry(0, content="a" * 40), book_id="big", token_budget=100)
    small = make_book(entry(0, content="b" * 40), book_id="small", token_budget=15)

    result = scan_lorebooks([(big, None), (small, None)], "dragon")

    assert [a.lorebook_id for a in result.activated_entries] == ["big"]
    assert result.total_tokens == 10


def test_budget_from_binding_override(store: LorebookStore) -> None:
    book = make_book(entry(0, content="a" * 40), token_budget=100)
    binding = bind_lorebook_to_chat(store, "chat", _store_book(store).id, SettingsOverrides(token_budget=5))

    assert uids(scan_lorebooks([(book, binding)], "dragon")) == []


def test_zero_budget_is_honored() -> None:
    book = make_book(entry(0, content="x"), token_budget=0)
    result = scan_lorebooks([(book, None)], "dragon")
    assert uids(result) == []
    assert result.total_tokens == 0


def test_total_never_exceeds_largest_budget() -> None:
    book = make_book(*(entry(i, content="z" * (i * 7 + 1)) for i in range(25)), token_budget=60)
    result = scan_lorebooks([(book, None)], "dragon")

    assert result.total_tokens <= 60
    assert result.total_tokens == sum(a.estimated_tokens for a in result.activated_entries)


def test_estimate_tokens() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("é") == 1
    assert estimate_tokens("龙龙") == 2


# ============================================================================
# Matching
# ============================================================================

def test_case_sensitivity() -> None:
    book = make_book(entry(0, keys=["Dragon"]))
    assert uids(scan_lorebooks([(book, None)], "a dragon")) == [0]

    strict = make_book(entry(0, keys=["Dragon"]), case_sensitive=True)
    assert uids(scan_lorebooks([(strict, None)], "a dragon")) == []
    assert uids(scan_lorebooks([(strict, None)], "a Dragon")) == [0]

    entry_override = make_book(entry(0, keys=["Dragon"], case_sensitive=False), case_sensitive=True)
    assert uids(scan_lorebooks([(entry_override, None)], "a dragon")) == [0]


def test_whole_words() -> None:
    loose = make_book(entry(0, keys=["cat"]))
    strict = make_book(entry(0, keys=["cat"]), match_whole_words=True)

    assert uids(scan_lorebooks([(loose, None)], "concatenate")) == [0]
    assert uids(scan_lorebooks([(strict, None)], "concatenate")) == []
    assert uids(scan_lorebooks([(strict, None)], "a Cat sat")) == [0]


def test_whole_words_escapes_regex() -> None:
    book = make_book(entry(0, keys=["c++"]), match_whole_words=True)
    assert uids(scan_lorebooks([(book, None)], "write c++ code")) == []
    assert uids(scan_lorebooks([(book, None)], "use c++b")) == [0]


def test_blank_keys_never_match() -> None:
    book = make_book(entry(0, keys=["", "  "]))
    assert uids(scan_lorebooks([(book, None)], "anything at all")) == []


def test_disabled_never_activates() -> None:
    book = make_book(entry(0, disable=True), entry(1, constant=True, disable=True))
    assert uids(scan_lorebooks([(book, None)], "dragon")) == []


def test_broken_entry_is_skipped() -> None:
    book = make_book(entry(0, constant=True, content=None), entry(1))

    result = scan_lorebooks([(book, None)], "dragon")

    assert uids(result) == [1]


def test_entry_with_bad_order_is_skipped() -> None:
    book = make_book(entry(0, order=None), entry(1, order="x"), entry(2, order="5"), entry(3, order=50))

    result = scan_lorebooks([(book, None)], "dragon")

    assert uids(result) == [3, 2]
    assert [a.order for a in result.activated_entries] == [50, 5]


def test_equal_order_keeps_lorebook_then_uid_order() -> None:
    first = make_book(entry(5), entry(2), book_id="first")
    second = make_book(entry(1), book_id="second")

    result = scan_lorebooks([(first, None), (second, None)], "dragon")

    assert [(a.lorebook_id, a.uid) for a in result.activated_entries] == [
        ("first", 2), ("first", 5), ("second", 1),
    ]


def test_build_scan_text() -> None:
    assert build_scan_text("plain") == "plain"
    assert build_scan_text(["a", "b", "c"], 2) == "b\nc"
    assert build_scan_text(["a", "b"], 0) == ""
    assert build_scan_text(["a", "b"], 10) == "a\nb"


# ============================================================================
# Store-backed scan
# ============================================================================

def _store_book(store: LorebookStore) -> Lorebook:
    data = {
        "entries": {
            "0": {"key": ["dragon"], "content": "Dragons breathe fire.", "selective": False},
            "1": {"key": ["castle"], "content": "A castle.", "selective": False, "order": 300},
        }
    }
    return store.create_lorebook(normalize_lorebook(parse_lorebook(data, "World.json")))


def test_scan_without_bindings(store: LorebookStore) -> None:
    result = scan(store, "chat-1", "a dragon appears")
    assert result.activated_entries == []
    assert result.total_tokens == 0


def test_scan_bound_lorebooks(store: LorebookStore) -> None:
    book = _store_book(store)
    bind_lorebook_to_chat(store, "chat-1", book.id)

    result = scan(store, "chat-1", ["old castle talk", "a dragon appears"], max_depth=1)

    assert uids(result) == [0]
    assert result.activated_entries[0].lorebook_name == "World"

    both = scan(store, "chat-1", ["old castle talk", "a dragon appears"])
    assert uids(both) == [1, 0]


def test_scan_skips_missing_lorebook(store: LorebookStore) -> None:
    gone = _store_book(store)
    kept = _store_book(store)
    bind_lorebook_to_chat(store, "chat-1", gone.id)
    bind_lorebook_to_chat(store, "chat-1", kept.id)
    store._book_path(gone.id).unlink()

    result = scan(store, "chat-1", "dragon")

    assert [a.lorebook_id for a in result.activated_entries] == [kept.id]


def test_scan_skips_unreadable_lorebook(store: LorebookStore) -> None:
    broken = _store_book(store)
    kept = _store_book(store)
    bind_lorebook_to_chat(store, "chat-1", broken.id)
    bind_lorebook_to_chat(store, "chat-1", kept.id)
    store._book_path(broken.id).write_bytes(b"\xff\xfe{not utf8")

    result = scan(store, "chat-1", "dragon")

    assert [a.lorebook_id for a in result.activated_entries] == [kept.id]
    assert store.get_lorebook(broken.id) is None


def test_scan_includes_deactivated_but_bound_lorebook(store: LorebookStore) -> None:
    book = _store_book(store)
    bind_lorebook_to_chat(store, "chat-1", book.id)
    store.delete_lorebook(book.id)

    assert uids(scan(store, "chat-1", "dragon")) == [0]


def test_scan_binding_order(store: LorebookStore) -> None:
    a = _store_book(store)
    b = _store_book(store)
    bind_lorebook_to_chat(store, "chat-1", a.id)
    bind_lorebook_to_chat(store, "chat-1", b.id)

    default = scan(store, "chat-1", "dragon")
    reversed_ = scan(store, "chat-1", "dragon", order_bindings=lambda bs: list(reversed(bs)))

    assert [x.lorebook_id for x in default.activated_entries] == [a.id, b.id]
    assert [x.lorebook_id for x in reversed_.activated_entries] == [b.id, a.id]


def test_world_info_prompt() -> None:
    result = scan_lorebooks([(make_book(entry(0, comment="Dragons", content=" Big. ")), None)], "dragon")

    assert build_world_info_prompt(result.activated_entries) == "## World Information\n\n### Dragons\nBig."
    assert build_world_info_prompt([]) == ""
