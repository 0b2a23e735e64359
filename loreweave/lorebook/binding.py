"""Chat bindings: attaching lorebooks to chats, per-chat overrides and activation history."""

from __future__ import annotations

import dataclasses
from datetime import datetime

from loguru import logger

from loreweave.lorebook.errors import NotFoundError
from loreweave.lorebook.storage import LorebookStore, generate_id
from loreweave.lorebook.types import (
    ActivationRecord,
    ChatBinding,
    Lorebook,
    LorebookSettings,
    ScanResult,
    SettingsOverrides,
)


def resolve_effective_settings(lorebook: Lorebook, binding: ChatBinding | None) -> LorebookSettings:
    """Lorebook settings with the binding's non-None overrides applied field by field."""
    if binding is None:
        return dataclasses.replace(lorebook.settings)
    changes = {
        f.name: getattr(binding.overrides, f.name)
        for f in dataclasses.fields(SettingsOverrides)
        if getattr(binding.overrides, f.name) is not None
    }
    return dataclasses.replace(lorebook.settings, **changes)


def bind_lorebook_to_chat(
    store: LorebookStore,
    chat_id: str,
    lorebook_id: str,
    overrides: SettingsOverrides | None = None,
) -> ChatBinding:
    """Attach a lorebook to a chat.

    Binding the same pair again refreshes the existing active binding's
    overrides and timestamp instead of creating a second one.

    Raises:
        NotFoundError: if the lorebook does not exist.
    """
    if store.get_lorebook(lorebook_id) is None:
        raise NotFoundError(f"Lorebook not found: {lorebook_id}")

    now = datetime.now().isoformat()
    existing = _active_binding(store, chat_id, lorebook_id)
    if existing is not None:
        existing.overrides = overrides or SettingsOverrides()
        existing.applied_at = now
        store.save_binding(existing)
        logger.debug(f"Refreshed binding {existing.id} ({chat_id} -> {lorebook_id})")
        return existing

    binding = ChatBinding(
        id=generate_id(f"bind-{chat_id}"),
        chat_id=chat_id,
        lorebook_id=lorebook_id,
        overrides=overrides or SettingsOverrides(),
        applied_at=now,
        is_active=True,
    )
    store.save_binding(binding)
    store.touch(lorebook_id)
    logger.info(f"Bound lorebook {lorebook_id} to chat {chat_id}")
    return binding


def unbind_lorebook_from_chat(store: LorebookStore, chat_id: str, lorebook_id: str) -> ChatBinding:
    """Detach a lorebook from a chat. The binding and its history are kept, marked inactive.

    Raises:
        NotFoundError: if the lorebook is not bound to the chat.
    """
    binding = _active_binding(store, chat_id, lorebook_id)
    if binding is None:
        raise NotFoundError("Lorebook not applied to this chat")
    binding.is_active = False
    store.save_binding(binding)
    logger.info(f"Unbound lorebook {lorebook_id} from chat {chat_id}")
    return binding


def record_activation_history(
    store: LorebookStore,
    chat_id: str,
    lorebook_id: str,
    activations: list[ActivationRecord],
) -> ChatBinding:
    """Replace the binding's activation history with what fired on the latest turn.

    Raises:
        NotFoundError: if the lorebook is not bound to the chat.
    """
    binding = _active_binding(store, chat_id, lorebook_id)
    if binding is None:
        raise NotFoundError("Lorebook not applied to this chat")
    binding.activated_entries = list(activations)
    store.save_binding(binding)
    return binding


def history_from_scan(result: ScanResult, activated_at: str | None = None) -> dict[str, list[ActivationRecord]]:
    """Group a scan result into activation records per lorebook ID."""
    stamp = activated_at or datetime.now().isoformat()
    grouped: dict[str, list[ActivationRecord]] = {}
    for item in result.activated_entries:
        grouped.setdefault(item.lorebook_id, []).append(ActivationRecord(
            uid=item.uid,
            key=list(item.matched_keys),
            activated_at=stamp,
            sticky=item.sticky,
            cooldown=item.cooldown,
            delay=item.delay,
        ))
    return grouped


def get_active_lorebooks(store: LorebookStore, chat_id: str) -> list[dict]:
    """Summaries of the lorebooks currently bound to a chat."""
    result = []
    for binding in store.list_bindings(chat_id=chat_id, active_only=True):
        book = store.get_lorebook(binding.lorebook_id)
        if book is None:
            continue
        result.append({
            "id": book.id,
            "name": book.name,
            "description": book.description,
            "entry_count": book.entry_count,
            "format": book.format.value,
            "applied_at": binding.applied_at,
            "overrides": dataclasses.asdict(binding.overrides),
            "activated_entries": len(binding.activated_entries),
        })
    return result


def _active_binding(store: LorebookStore, chat_id: str, lorebook_id: str) -> ChatBinding | None:
    for binding in store.list_bindings(chat_id=chat_id, lorebook_id=lorebook_id, active_only=True):
        return binding
    return None
