"""Lorebook type definitions: dataclasses for entries, lorebooks, chat bindings and scan results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


# ============================================================================
# Enumerations
# ============================================================================

class LorebookFormat(str, Enum):
    SILLYTAVERN = "sillytavern"
    NOVELAI = "novelai"
    AGNAI = "agnai"
    RISU = "risu"
    UNKNOWN = "unknown"


class SelectiveLogic(IntEnum):
    AND_ANY = 0
    NOT_ALL = 1
    NOT_ANY = 2
    AND_ALL = 3


class EntryPosition(IntEnum):
    BEFORE = 0
    AFTER = 1
    EM_TOP = 2
    EM_BOTTOM = 3
    AN_TOP = 4
    AN_BOTTOM = 5
    AT_DEPTH = 6


class InsertionStrategy(IntEnum):
    EVENLY = 0
    CHARACTER_FIRST = 1
    GLOBAL_FIRST = 2


DEFAULT_TOKEN_BUDGET = 2048


# ============================================================================
# Entry Types
# ============================================================================

@dataclass
class WorldInfoEntry:
    uid: int = 0
    key: list[str] = field(default_factory=list)
    keysecondary: list[str] = field(default_factory=list)
    comment: str = ""
    content: str = ""
    # Activation control
    constant: bool = False
    vectorized: bool = False
    selective: bool = True
    selective_logic: int = SelectiveLogic.AND_ANY
    add_memo: bool = False
    disable: bool = False
    # Position and order
    order: int = 100
    position: int = EntryPosition.BEFORE
    depth: int = 4
    # Recursion (carried, not evaluated)
    exclude_recursion: bool = False
    prevent_recursion: bool = False
    delay_until_recursion: int | bool = False
    # Probability
    probability: int = 100
    use_probability: bool = True
    # Groups (carried, not evaluated)
    group: str = ""
    group_override: bool = False
    group_weight: int = 100
    use_group_scoring: bool | None = None
    # Scan overrides; None defers to the lorebook settings
    scan_depth: int | None = None
    case_sensitive: bool | None = None
    match_whole_words: bool | None = None
    automation_id: str = ""
    role: int = 0
    # Temporal fields (carried, not evaluated)
    sticky: int | None = None
    cooldown: int | None = None
    delay: int | None = None
    display_index: int | None = None
    triggers: list[str] = field(default_factory=list)
    # Unrecognized source fields, kept for export
    extra: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Lorebook Types
# ============================================================================

@dataclass
class LorebookSettings:
    recursive: bool = False
    scan_depth: int = 2
    token_budget: int = DEFAULT_TOKEN_BUDGET
    recursion_depth: int = 50
    recursion_steps: int = 0
    min_activations: int = 0
    max_depth: int = 1000
    insertion_strategy: str = "character_first"
    include_names: bool = True
    case_sensitive: bool = False
    match_whole_words: bool = False
    use_group_scoring: bool = False
    budget_cap: int = 0


@dataclass
class SettingsOverrides:
    """Per-chat overrides; fields left as None keep the lorebook's value."""

    recursive: bool | None = None
    scan_depth: int | None = None
    token_budget: int | None = None
    case_sensitive: bool | None = None
    match_whole_words: bool | None = None


@dataclass
class ParsedLorebook:
    name: str = ""
    description: str = ""
    entries: list[WorldInfoEntry] = field(default_factory=list)
    settings: LorebookSettings = field(default_factory=LorebookSettings)
    format: LorebookFormat = LorebookFormat.SILLYTAVERN
    version: str | None = None
    original_data: Any = None


@dataclass
class Lorebook:
    id: str = ""
    name: str = ""
    description: str = ""
    entries: list[WorldInfoEntry] = field(default_factory=list)
    settings: LorebookSettings = field(default_factory=LorebookSettings)
    format: LorebookFormat = LorebookFormat.SILLYTAVERN
    version: str | None = None
    original_data: Any = None
    entry_count: int = 0
    imported_at: str = ""
    last_used: str | None = None
    is_active: bool = True
    source_path: str = ""

    def __post_init__(self) -> None:
        self.entries.sort(key=lambda e: e.uid)

    def get_entry(self, uid: int) -> WorldInfoEntry | None:
        for entry in self.entries:
            if entry.uid == uid:
                return entry
        return None


# ============================================================================
# Chat Binding Types
# ============================================================================

@dataclass
class ActivationRecord:
    uid: int = 0
    key: list[str] = field(default_factory=list)
    activated_at: str = ""
    sticky: int | None = None
    cooldown: int | None = None
    delay: int | None = None


@dataclass
class ChatBinding:
    id: str = ""
    chat_id: str = ""
    lorebook_id: str = ""
    overrides: SettingsOverrides = field(default_factory=SettingsOverrides)
    applied_at: str = ""
    is_active: bool = True
    activated_entries: list[ActivationRecord] = field(default_factory=list)


# ============================================================================
# Scan Types
# ============================================================================

@dataclass
class ActivatedEntry:
    uid: int
    lorebook_id: str
    lorebook_name: str
    comment: str
    content: str
    position: int
    order: int
    depth: int
    group: str
    estimated_tokens: int
    matched_keys: list[str] = field(default_factory=list)
    sticky: int | None = None
    cooldown: int | None = None
    delay: int | None = None


@dataclass
class ScanResult:
    activated_entries: list[ActivatedEntry] = field(default_factory=list)
    total_tokens: int = 0


# ============================================================================
# Validation / Import Types
# ============================================================================

@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    format: LorebookFormat | None = None

    def summary(self) -> str:
        """Human-readable one-liner for CLI and import reports."""
        fmt = self.format.value if self.format else "unknown"
        if self.is_valid:
            if self.warnings:
                return f"Valid {fmt} lorebook with {len(self.warnings)} warnings"
            return f"Valid {fmt} lorebook"
        return f"Invalid lorebook: {self.errors[0] if self.errors else 'Unknown error'}"


@dataclass
class ImportResult:
    id: str = ""
    name: str = ""
    format: LorebookFormat | None = None
    entry_count: int = 0
    validation: ValidationResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DeleteResult:
    deleted: bool = False
    deactivated: bool = False
    message: str = ""
