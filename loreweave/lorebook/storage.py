"""Lorebook storage: file-based JSON storage for lorebooks and chat bindings.

Layout under the store root::

    lorebooks/index.json      summary rows (id, name, format, entry_count, ...)
    lorebooks/<id>.json       one document per lorebook
    bindings.json             every chat binding, in creation order
"""

from __future__ import annotations

import json
import random
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from loreweave.lorebook.errors import NameConflictError, NotFoundError
from loreweave.lorebook.types import (
    ActivationRecord,
    ChatBinding,
    DeleteResult,
    Lorebook,
    LorebookFormat,
    LorebookSettings,
    ParsedLorebook,
    SettingsOverrides,
    WorldInfoEntry,
)

MAX_NAME_ATTEMPTS = 100


@dataclass
class LorebookIndex:
    version: int = 1
    entries: list[dict] = field(default_factory=list)


@dataclass
class BindingIndex:
    version: int = 1
    bindings: list[dict] = field(default_factory=list)


def _ensure(p: Path) -> Path:
    p.mkdir(parents=True, exist_ok=True)
    return p


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None


def _write_json(path: Path, data: Any) -> None:
    _ensure(path.parent)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), "utf-8")


class LorebookStore:
    """Stores lorebooks and their chat bindings as JSON files under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def _book_dir(self) -> Path:
        return _ensure(self.root / "lorebooks")

    def _book_path(self, lorebook_id: str) -> Path:
        return self._book_dir() / f"{lorebook_id}.json"

    def _index_path(self) -> Path:
        return self._book_dir() / "index.json"

    def _bindings_path(self) -> Path:
        return _ensure(self.root) / "bindings.json"

    # ========================================================================
    # Index
    # ========================================================================

    def _load_index(self) -> LorebookIndex:
        raw = _read_json(self._index_path())
        if raw and isinstance(raw, dict):
            return LorebookIndex(
                version=raw.get("version", 1),
                entries=raw.get("entries", []),
            )
        return LorebookIndex()

    def _save_index(self, idx: LorebookIndex) -> None:
        _write_json(self._index_path(), asdict(idx))

    @staticmethod
    def _index_row(book: Lorebook) -> dict:
        return {
            "id": book.id,
            "name": book.name,
            "format": book.format.value,
            "entry_count": book.entry_count,
            "imported_at": book.imported_at,
            "is_active": book.is_active,
        }

    # ========================================================================
    # Lorebooks
    # ========================================================================

    def unique_name(self, base: str) -> str:
        """Return ``base`` or the first free ``base (n)``.

        Raises:
            NameConflictError: after MAX_NAME_ATTEMPTS taken names.
        """
        taken = {e.get("name") for e in self._load_index().entries}
        name = base
        counter = 1
        while name in taken:
            name = f"{base} ({counter})"
            counter += 1
            if counter > MAX_NAME_ATTEMPTS:
                raise NameConflictError("Unable to generate unique lorebook name")
        return name

    def create_lorebook(
        self,
        parsed: ParsedLorebook,
        custom_name: str | None = None,
        source_path: str = "",
    ) -> Lorebook:
        """Store a normalized lorebook under a unique name."""
        name = self.unique_name(custom_name or parsed.name)
        book = Lorebook(
            id=generate_id(name),
            name=name,
            description=parsed.description,
            entries=list(parsed.entries),
            settings=parsed.settings,
            format=parsed.format,
            version=parsed.version,
            original_data=parsed.original_data,
            entry_count=len(parsed.entries),
            imported_at=datetime.now().isoformat(),
            is_active=True,
            source_path=source_path,
        )
        self.save_lorebook(book)
        logger.info(f"Stored lorebook '{name}' ({book.format.value}, {book.entry_count} entries) as {book.id}")
        return book

    def save_lorebook(self, book: Lorebook) -> Lorebook:
        book.entry_count = len(book.entries)
        _write_json(self._book_path(book.id), _lorebook_to_dict(book))
        idx = self._load_index()
        idx.entries = [e for e in idx.entries if e.get("id") != book.id]
        idx.entries.append(self._index_row(book))
        self._save_index(idx)
        return book

    def get_lorebook(self, lorebook_id: str) -> Lorebook | None:
        """Load a stored lorebook by ID; None when missing or unreadable."""
        raw = _read_json(self._book_path(lorebook_id))
        if not raw or not isinstance(raw, dict):
            return None
        return _dict_to_lorebook(raw)

    def get_lorebook_by_name(self, name: str) -> Lorebook | None:
        """Find a lorebook by case-insensitive name or exact ID."""
        for row in self._load_index().entries:
            if row.get("id") == name or row.get("name", "").lower() == name.lower():
                return self.get_lorebook(row["id"])
        return None

    def list_lorebooks(self, include_inactive: bool = False) -> list[dict]:
        """Index rows, newest import first."""
        rows = [
            e for e in self._load_index().entries
            if include_inactive or e.get("is_active", True)
        ]
        return sorted(rows, key=lambda e: e.get("imported_at", ""), reverse=True)

    def touch(self, lorebook_id: str) -> None:
        """Record that a lorebook was just used."""
        book = self.get_lorebook(lorebook_id)
        if book is None:
            raise NotFoundError(f"Lorebook not found: {lorebook_id}")
        book.last_used = datetime.now().isoformat()
        self.save_lorebook(book)

    def delete_lorebook(self, lorebook_id: str) -> DeleteResult:
        """Delete a lorebook, or deactivate it while chats still use it."""
        book = self.get_lorebook(lorebook_id)
        if book is None:
            raise NotFoundError(f"Lorebook not found: {lorebook_id}")

        active = self.list_bindings(lorebook_id=lorebook_id, active_only=True)
        if active:
            book.is_active = False
            self.save_lorebook(book)
            message = f"Lorebook deactivated (in use by {len(active)} chat(s))"
            logger.info(f"{book.name}: {message}")
            return DeleteResult(deactivated=True, message=message)

        bindings = self._load_bindings()
        bindings.bindings = [b for b in bindings.bindings if b.get("lorebook_id") != lorebook_id]
        self._save_bindings(bindings)

        self._book_path(lorebook_id).unlink(missing_ok=True)
        idx = self._load_index()
        idx.entries = [e for e in idx.entries if e.get("id") != lorebook_id]
        self._save_index(idx)
        logger.info(f"Deleted lorebook '{book.name}' ({lorebook_id})")
        return DeleteResult(deleted=True, message=f"Deleted lorebook '{book.name}'")

    def lorebook_stats(self, lorebook_id: str) -> dict | None:
        book = self.get_lorebook(lorebook_id)
        if book is None:
            return None

        bindings = self.list_bindings(lorebook_id=lorebook_id)
        return {
            "name": book.name,
            "format": book.format.value,
            "entry_count": book.entry_count,
            "active_entries": sum(1 for e in book.entries if not e.disable),
            "constant_entries": sum(1 for e in book.entries if e.constant),
            "total_keys": sum(len(e.key) + len(e.keysecondary) for e in book.entries),
            "active_chats": sum(1 for b in bindings if b.is_active),
            "total_chats": len(bindings),
            "imported_at": book.imported_at,
            "last_used": book.last_used,
        }

    # ========================================================================
    # Chat Bindings
    # ========================================================================

    def _load_bindings(self) -> BindingIndex:
        raw = _read_json(self._bindings_path())
        if raw and isinstance(raw, dict):
            return BindingIndex(
                version=raw.get("version", 1),
                bindings=raw.get("bindings", []),
            )
        return BindingIndex()

    def _save_bindings(self, idx: BindingIndex) -> None:
        _write_json(self._bindings_path(), asdict(idx))

    def list_bindings(
        self,
        chat_id: str | None = None,
        lorebook_id: str | None = None,
        active_only: bool = False,
    ) -> list[ChatBinding]:
        """Bindings matching the filters, in creation order."""
        result = []
        for raw in self._load_bindings().bindings:
            if not isinstance(raw, dict):
                continue
            if chat_id is not None and raw.get("chat_id") != chat_id:
                continue
            if lorebook_id is not None and raw.get("lorebook_id") != lorebook_id:
                continue
            if active_only and not raw.get("is_active", True):
                continue
            result.append(_dict_to_binding(raw))
        return result

    def save_binding(self, binding: ChatBinding) -> ChatBinding:
        """Insert or replace a binding, keeping its position in creation order."""
        idx = self._load_bindings()
        row = asdict(binding)
        for i, existing in enumerate(idx.bindings):
            if existing.get("id") == binding.id:
                idx.bindings[i] = row
                break
        else:
            idx.bindings.append(row)
        self._save_bindings(idx)
        return binding

    # ========================================================================
    # Status
    # ========================================================================

    def status(self) -> dict:
        rows = self._load_index().entries
        active = sum(1 for e in rows if e.get("is_active", True))
        return {
            "lorebooks": len(rows),
            "active_lorebooks": active,
            "inactive_lorebooks": len(rows) - active,
            "active_bindings": len(self.list_bindings(active_only=True)),
        }


# ============================================================================
# Helpers
# ============================================================================

def generate_id(name: str) -> str:
    """Generate a unique ID from a name, a millisecond timestamp and a random suffix."""
    sanitized = re.sub(r"[^a-z0-9\u4e00-\u9fff]+", "-", name.lower()).strip("-")[:32] or "lorebook"
    timestamp = _int_to_base36(int(time.time() * 1000))
    suffix = _int_to_base36(random.randint(0, 36**4 - 1)).rjust(4, "0")
    return f"{sanitized}-{timestamp}{suffix}"


def _int_to_base36(n: int) -> str:
    """Convert integer to base36 string."""
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    if n == 0:
        return "0"
    result = []
    while n:
        result.append(chars[n % 36])
        n //= 36
    return "".join(reversed(result))


# ============================================================================
# Serialization Helpers
# ============================================================================

def _lorebook_to_dict(book: Lorebook) -> dict:
    return {
        "id": book.id,
        "name": book.name,
        "description": book.description,
        "entries": [asdict(e) for e in book.entries],
        "settings": asdict(book.settings),
        "format": book.format.value,
        "version": book.version,
        "original_data": book.original_data,
        "entry_count": book.entry_count,
        "imported_at": book.imported_at,
        "last_used": book.last_used,
        "is_active": book.is_active,
        "source_path": book.source_path,
    }


def _dict_to_lorebook(d: dict) -> Lorebook:
    entries = []
    for e in d.get("entries", []):
        if isinstance(e, dict):
            entries.append(WorldInfoEntry(**{
                k: v for k, v in e.items()
                if k in WorldInfoEntry.__dataclass_fields__
            }))

    settings_raw = d.get("settings", {})
    settings = LorebookSettings(**{
        k: v for k, v in settings_raw.items()
        if k in LorebookSettings.__dataclass_fields__
    }) if isinstance(settings_raw, dict) else LorebookSettings()

    try:
        fmt = LorebookFormat(d.get("format", "sillytavern"))
    except ValueError:
        fmt = LorebookFormat.UNKNOWN

    return Lorebook(
        id=d.get("id", ""),
        name=d.get("name", ""),
        description=d.get("description", ""),
        entries=entries,
        settings=settings,
        format=fmt,
        version=d.get("version"),
        original_data=d.get("original_data"),
        entry_count=d.get("entry_count", len(entries)),
        imported_at=d.get("imported_at", ""),
        last_used=d.get("last_used"),
        is_active=d.get("is_active", True),
        source_path=d.get("source_path", ""),
    )


def _dict_to_binding(d: dict) -> ChatBinding:
    overrides_raw = d.get("overrides") or {}
    overrides = SettingsOverrides(**{
        k: v for k, v in overrides_raw.items()
        if k in SettingsOverrides.__dataclass_fields__
    }) if isinstance(overrides_raw, dict) else SettingsOverrides()

    history = []
    for a in d.get("activated_entries", []):
        if isinstance(a, dict):
            history.append(ActivationRecord(**{
                k: v for k, v in a.items()
                if k in ActivationRecord.__dataclass_fields__
            }))

    return ChatBinding(
        id=d.get("id", ""),
        chat_id=d.get("chat_id", ""),
        lorebook_id=d.get("lorebook_id", ""),
        overrides=overrides,
        applied_at=d.get("applied_at", ""),
        is_active=d.get("is_active", True),
        activated_entries=history,
    )
