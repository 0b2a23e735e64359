"""Lorebook engine: format conversion, validation, storage, chat bindings and activation."""

from loreweave.lorebook.activation import scan, scan_lorebooks
from loreweave.lorebook.binding import (
    bind_lorebook_to_chat,
    record_activation_history,
    resolve_effective_settings,
    unbind_lorebook_from_chat,
)
from loreweave.lorebook.errors import (
    FormatError,
    LorebookError,
    NameConflictError,
    NotFoundError,
    ValidationError,
)
from loreweave.lorebook.importer import import_lorebook
from loreweave.lorebook.storage import LorebookStore
from loreweave.lorebook.types import (
    ActivatedEntry,
    ActivationRecord,
    ChatBinding,
    Lorebook,
    LorebookFormat,
    LorebookSettings,
    ScanResult,
    SelectiveLogic,
    SettingsOverrides,
    WorldInfoEntry,
)

__all__ = [
    "ActivatedEntry",
    "ActivationRecord",
    "ChatBinding",
    "FormatError",
    "Lorebook",
    "LorebookError",
    "LorebookFormat",
    "LorebookSettings",
    "LorebookStore",
    "NameConflictError",
    "NotFoundError",
    "ScanResult",
    "SelectiveLogic",
    "SettingsOverrides",
    "ValidationError",
    "WorldInfoEntry",
    "bind_lorebook_to_chat",
    "import_lorebook",
    "record_activation_history",
    "resolve_effective_settings",
    "scan",
    "scan_lorebooks",
    "unbind_lorebook_from_chat",
]
