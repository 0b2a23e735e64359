"""Lorebook activation: keyword matching, selective logic, probability and token budget.

``scan_lorebooks`` is a pure function over already-loaded lorebooks; ``scan``
loads a chat's bindings from a store and delegates to it.
"""

from __future__ import annotations

import math
import random
import re
from typing import Callable, Protocol, Sequence

from loguru import logger

from loreweave.lorebook.binding import resolve_effective_settings
from loreweave.lorebook.storage import LorebookStore
from loreweave.lorebook.types import (
    DEFAULT_TOKEN_BUDGET,
    ActivatedEntry,
    ChatBinding,
    Lorebook,
    LorebookSettings,
    ScanResult,
    SelectiveLogic,
    WorldInfoEntry,
)

DEFAULT_MAX_DEPTH = 100


class RandomSource(Protocol):
    def random(self) -> float: ...


BindingOrder = Callable[[list[ChatBinding]], list[ChatBinding]]


# ============================================================================
# Scan
# ============================================================================

def scan(
    store: LorebookStore,
    chat_id: str,
    context: str | Sequence[str],
    max_depth: int = DEFAULT_MAX_DEPTH,
    *,
    rng: RandomSource | None = None,
    order_bindings: BindingOrder | None = None,
) -> ScanResult:
    """Scan context against every lorebook bound to a chat.

    Args:
        store: Where bindings and lorebooks are loaded from.
        chat_id: The chat whose active bindings are scanned.
        context: Text to match, or a list of messages (the last
            ``max_depth`` are joined).
        max_depth: Message window when ``context`` is a list.
        rng: Random source for probability checks (seed it in tests).
        order_bindings: Reorders bindings before scanning; defaults to
            creation order.

    Returns:
        ScanResult with activated entries sorted by order (highest first).
    """
    bindings = store.list_bindings(chat_id=chat_id, active_only=True)
    if not bindings:
        return ScanResult()
    if order_bindings is not None:
        bindings = order_bindings(bindings)

    bound: list[tuple[Lorebook, ChatBinding | None]] = []
    for binding in bindings:
        book = store.get_lorebook(binding.lorebook_id)
        if book is None:
            logger.debug(f"Skipping missing lorebook {binding.lorebook_id} bound to chat {chat_id}")
            continue
        bound.append((book, binding))

    return scan_lorebooks(bound, build_scan_text(context, max_depth), rng=rng)


def scan_lorebooks(
    bound: Sequence[tuple[Lorebook, ChatBinding | None]],
    context: str,
    *,
    rng: RandomSource | None = None,
) -> ScanResult:
    """Activate entries from lorebooks in the given order.

    Entries are visited by ascending uid; the token total runs across all
    lorebooks and each lorebook's effective budget caps its own additions.
    """
    rng = rng if rng is not None else random.Random()
    activated: list[ActivatedEntry] = []
    total_tokens = 0

    for book, binding in bound:
        settings = resolve_effective_settings(book, binding)
        budget = settings.token_budget if settings.token_budget is not None else DEFAULT_TOKEN_BUDGET

        for entry in sorted(book.entries, key=lambda e: e.uid):
            try:
                matched = check_entry_activation(entry, context, settings, rng)
                if matched is None:
                    continue

                cost = estimate_tokens(entry.content)
                if total_tokens + cost > budget:
                    logger.debug(
                        f"Token budget exceeded ({total_tokens}+{cost}>{budget}), "
                        f"skipping entry {entry.uid} of '{book.name}'"
                    )
                    continue

                activated.append(_to_activated(entry, book, matched, cost))
                total_tokens += cost
            except Exception as e:
                logger.warning(f"Skipping entry {getattr(entry, 'uid', '?')} of '{book.name}': {e}")

    # Stable: equal orders keep lorebook order, then uid order
    activated.sort(key=lambda a: a.order, reverse=True)

    logger.debug(f"Activated {len(activated)} entries using {total_tokens} tokens")
    return ScanResult(activated_entries=activated, total_tokens=total_tokens)


def build_scan_text(context: str | Sequence[str], max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Scan text from a string, or from the last ``max_depth`` messages of a list."""
    if isinstance(context, str):
        return context
    messages = list(context)
    if max_depth >= 0:
        messages = messages[-max_depth:] if max_depth else []
    return "\n".join(str(m) for m in messages)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four UTF-8 bytes."""
    return math.ceil(len(text.encode("utf-8")) / 4)


# ============================================================================
# Activation Logic
# ============================================================================

def check_entry_activation(
    entry: WorldInfoEntry,
    context: str,
    settings: LorebookSettings,
    rng: RandomSource,
) -> list[str] | None:
    """Decide whether a single entry fires.

    Returns:
        The matched primary keys (empty for constant entries), or None when
        the entry does not activate.
    """
    if entry.disable:
        return None

    if entry.constant:
        matched: list[str] = []
    else:
        case_sensitive = _resolve_flag(entry.case_sensitive, settings.case_sensitive)
        whole_words = _resolve_flag(entry.match_whole_words, settings.match_whole_words)

        primary = match_keys(entry.key, context, case_sensitive, whole_words)
        secondary = (
            match_keys(entry.keysecondary, context, case_sensitive, whole_words)
            if entry.keysecondary else []
        )
        if not evaluate_logic(entry.selective_logic, primary, secondary, entry.selective):
            return None
        matched = primary + secondary

    if entry.use_probability and not _roll_probability(entry.probability, rng):
        return None

    return matched


def evaluate_logic(
    logic: int | None,
    primary_matches: list[str],
    secondary_matches: list[str],
    selective: bool,
) -> bool:
    """Combine primary and secondary matches.

    AND_ALL behaves like AND_ANY and NOT_ALL only requires a primary match.
    """
    has_primary = bool(primary_matches)
    has_secondary = bool(secondary_matches)

    if not selective:
        return has_primary

    logic = logic or SelectiveLogic.AND_ANY
    if logic == SelectiveLogic.AND_ANY:
        return has_primary and has_secondary
    if logic == SelectiveLogic.AND_ALL:
        return has_primary and has_secondary
    if logic == SelectiveLogic.NOT_ANY:
        return has_primary and not has_secondary
    if logic == SelectiveLogic.NOT_ALL:
        return has_primary
    return has_primary


def match_keys(keys: list[str], context: str, case_sensitive: bool, whole_words: bool) -> list[str]:
    """Return the keys found in the context, in key order."""
    return [k for k in keys if _key_matches(k, context, case_sensitive, whole_words)]


def _key_matches(key: str, context: str, case_sensitive: bool, whole_words: bool) -> bool:
    """Check if a single key matches in the context."""
    if not key or not key.strip():
        return False

    if whole_words:
        flags = 0 if case_sensitive else re.IGNORECASE
        pattern = r"\b" + re.escape(key) + r"\b"
        return bool(re.search(pattern, context, flags))
    else:
        if case_sensitive:
            return key in context
        return key.lower() in context.lower()


def _resolve_flag(entry_value: bool | None, book_value: bool | None) -> bool:
    if entry_value is not None:
        return bool(entry_value)
    if book_value is not None:
        return bool(book_value)
    return False


def _roll_probability(probability: int, rng: RandomSource) -> bool:
    if probability <= 0:
        return False
    roll = rng.random() * 100
    return roll <= probability


def _to_activated(entry: WorldInfoEntry, book: Lorebook, matched: list[str], cost: int) -> ActivatedEntry:
    return ActivatedEntry(
        uid=entry.uid,
        lorebook_id=book.id,
        lorebook_name=book.name,
        comment=entry.comment,
        content=entry.content,
        position=entry.position,
        order=int(entry.order),
        depth=entry.depth,
        group=entry.group,
        estimated_tokens=cost,
        matched_keys=matched,
        sticky=entry.sticky,
        cooldown=entry.cooldown,
        delay=entry.delay,
    )


# ============================================================================
# Rendering
# ============================================================================

def build_world_info_prompt(entries: list[ActivatedEntry]) -> str:
    """Build a prompt string from activated world info entries."""
    if not entries:
        return ""

    lines = ["## World Information", ""]
    for entry in entries:
        if entry.comment:
            lines.append(f"### {entry.comment}")
        lines.append(entry.content.strip())
        lines.append("")

    return "\n".join(lines).strip()
