"""Lorebook formats: detection, conversion into the canonical schema, and native export.

Supported inputs:
    - SillyTavern world info: ``{"entries": {"0": {...}, ...}}`` (or an entries array)
    - NovelAI lorebook: ``{"lorebookVersion": 5, "entries": [...]}``
    - Agnai memory book: ``{"kind": "memory", "entries": [...]}``
    - Risu lorebook: ``{"type": "risu", "data": [...]}``
"""

from __future__ import annotations

import dataclasses
import math
import re
from typing import Any, Callable

from loguru import logger

from loreweave.lorebook.errors import FormatError
from loreweave.lorebook.types import (
    InsertionStrategy,
    LorebookFormat,
    LorebookSettings,
    ParsedLorebook,
    SelectiveLogic,
    WorldInfoEntry,
)

# Native (camelCase) entry field -> WorldInfoEntry attribute
ENTRY_FIELDS: dict[str, str] = {
    "uid": "uid",
    "key": "key",
    "keysecondary": "keysecondary",
    "comment": "comment",
    "content": "content",
    "constant": "constant",
    "vectorized": "vectorized",
    "selective": "selective",
    "selectiveLogic": "selective_logic",
    "addMemo": "add_memo",
    "order": "order",
    "position": "position",
    "disable": "disable",
    "excludeRecursion": "exclude_recursion",
    "preventRecursion": "prevent_recursion",
    "delayUntilRecursion": "delay_until_recursion",
    "probability": "probability",
    "useProbability": "use_probability",
    "depth": "depth",
    "group": "group",
    "groupOverride": "group_override",
    "groupWeight": "group_weight",
    "scanDepth": "scan_depth",
    "caseSensitive": "case_sensitive",
    "matchWholeWords": "match_whole_words",
    "useGroupScoring": "use_group_scoring",
    "automationId": "automation_id",
    "role": "role",
    "sticky": "sticky",
    "cooldown": "cooldown",
    "delay": "delay",
    "displayIndex": "display_index",
    "triggers": "triggers",
}

_LIST_ATTRS = {"key", "keysecondary", "triggers"}
_STR_ATTRS = {"comment", "content", "group", "automation_id"}
_OPT_BOOL_ATTRS = {"case_sensitive", "match_whole_words", "use_group_scoring"}
_OPT_INT_ATTRS = {"scan_depth", "sticky", "cooldown", "delay", "display_index"}
_BOOL_ATTRS = {
    "constant", "vectorized", "selective", "add_memo", "disable",
    "exclude_recursion", "prevent_recursion", "use_probability", "group_override",
}
_INT_ATTRS = {"selective_logic", "order", "position", "depth", "probability", "group_weight", "role"}

_FILE_SUFFIX = re.compile(r"\.(json|jsonl|txt|png)$", re.IGNORECASE)


# ============================================================================
# Detection
# ============================================================================

def detect_format(data: Any) -> LorebookFormat:
    """Detect the source format of a decoded JSON value.

    Checks run in a fixed order; the first match wins.
    """
    if not isinstance(data, dict):
        return LorebookFormat.UNKNOWN

    entries = data.get("entries")
    if "lorebookVersion" in data and isinstance(entries, list):
        return LorebookFormat.NOVELAI
    if data.get("kind") == "memory" and isinstance(entries, list):
        return LorebookFormat.AGNAI
    if data.get("type") == "risu" and isinstance(data.get("data"), list):
        return LorebookFormat.RISU
    if isinstance(entries, (dict, list)):
        return LorebookFormat.SILLYTAVERN
    return LorebookFormat.UNKNOWN


# ============================================================================
# Parsing
# ============================================================================

def parse_lorebook(data: Any, file_name: str) -> ParsedLorebook:
    """Convert a decoded lorebook of any supported format into canonical form.

    Unknown shapes are attempted as native SillyTavern world info.

    Raises:
        FormatError: if the value is not an object or has no usable entries.
    """
    fmt = detect_format(data)
    name = lorebook_name_from_file(file_name)
    converter = _CONVERTERS.get(fmt, convert_sillytavern)
    if fmt is LorebookFormat.UNKNOWN:
        logger.debug(f"Unrecognized lorebook shape in '{file_name}', trying SillyTavern format")
    parsed = converter(data, name)
    logger.debug(f"Parsed {parsed.format.value} lorebook '{name}' with {len(parsed.entries)} entries")
    return parsed


def lorebook_name_from_file(file_name: str) -> str:
    """Default lorebook name: the file name without its lorebook extension."""
    return _FILE_SUFFIX.sub("", file_name or "").strip() or "Unnamed Lorebook"


def normalize_lorebook(parsed: ParsedLorebook) -> ParsedLorebook:
    """Re-key entries by uid, sort them ascending and fill in a description."""
    by_uid: dict[int, WorldInfoEntry] = {}
    for entry in parsed.entries:
        by_uid[entry.uid] = entry
    entries = sorted(by_uid.values(), key=lambda e: e.uid)
    return dataclasses.replace(
        parsed,
        entries=entries,
        description=parsed.description or f"Imported lorebook with {len(entries)} entries",
    )


def convert_sillytavern(data: Any, name: str) -> ParsedLorebook:
    """Parse native SillyTavern world info."""
    if not isinstance(data, dict) or not isinstance(data.get("entries"), (dict, list)):
        raise FormatError('Lorebook must contain an "entries" object')

    raw_entries = data["entries"]
    entries: list[WorldInfoEntry] = []
    if isinstance(raw_entries, dict):
        for index, (key, raw) in enumerate(raw_entries.items()):
            uid = native_uid(key, raw, index)
            entries.append(_native_entry(raw, uid))
    else:
        for index, raw in enumerate(raw_entries):
            entries.append(_native_entry(raw, list_entry_uid(raw, index)))

    return ParsedLorebook(
        name=name,
        description="",
        entries=entries,
        settings=_native_settings(data),
        format=LorebookFormat.SILLYTAVERN,
        original_data=data,
    )


def convert_novelai(data: Any, name: str) -> ParsedLorebook:
    """Convert a NovelAI lorebook. NovelAI has no secondary keys or selective logic."""
    raw_entries = _require_list(data, "entries", "NovelAI lorebook")
    entries = []
    for index, raw in enumerate(raw_entries):
        d = raw if isinstance(raw, dict) else {}
        display_name = d.get("displayName")
        context_config = d.get("contextConfig") if isinstance(d.get("contextConfig"), dict) else {}
        entries.append(WorldInfoEntry(
            uid=index,
            key=_coerce_list(d.get("keys")) if isinstance(d.get("keys"), list) else [],
            keysecondary=[],
            comment=str(display_name or ""),
            content=_as_str(d.get("text")),
            constant=_as_bool(d.get("forceActivation"), False),
            selective=False,
            selective_logic=SelectiveLogic.AND_ANY,
            add_memo=isinstance(display_name, str) and bool(display_name.strip()),
            order=_as_int(context_config.get("budgetPriority"), 100),
            disable=not d.get("enabled"),
            display_index=index,
            scan_depth=_as_int(d.get("searchRange"), None),
        ))

    version = data.get("lorebookVersion")
    return ParsedLorebook(
        name=name,
        entries=entries,
        settings=LorebookSettings(),
        format=LorebookFormat.NOVELAI,
        version=str(version) if version is not None else None,
        original_data=data,
    )


def convert_agnai(data: Any, name: str) -> ParsedLorebook:
    """Convert an Agnai memory book."""
    raw_entries = _require_list(data, "entries", "Agnai Memory Book")
    entries = []
    for index, raw in enumerate(raw_entries):
        d = raw if isinstance(raw, dict) else {}
        weight = d.get("weight")
        order = weight if weight is not None else d.get("priority")
        entries.append(WorldInfoEntry(
            uid=index,
            key=_coerce_list(d.get("keywords")) if isinstance(d.get("keywords"), list) else [],
            keysecondary=[],
            comment=_as_str(d.get("name")),
            content=_as_str(d.get("entry")),
            selective=False,
            selective_logic=SelectiveLogic.AND_ANY,
            add_memo=bool(d.get("name")),
            order=_as_int(order, 100),
            disable=not d.get("enabled"),
            display_index=index,
        ))

    return ParsedLorebook(
        name=name,
        entries=entries,
        settings=LorebookSettings(),
        format=LorebookFormat.AGNAI,
        original_data=data,
    )


def convert_risu(data: Any, name: str) -> ParsedLorebook:
    """Convert a Risu lorebook. Keys arrive as comma-joined strings."""
    raw_entries = _require_list(data, "data", "Risu Lorebook")
    entries = []
    for index, raw in enumerate(raw_entries):
        d = raw if isinstance(raw, dict) else {}
        secondkey = d.get("secondkey")
        entries.append(WorldInfoEntry(
            uid=index,
            key=_split_keys(d.get("key")),
            keysecondary=_split_keys(secondkey) if secondkey else [],
            comment=_as_str(d.get("comment")),
            content=_as_str(d.get("content")),
            constant=_as_bool(d.get("alwaysActive"), False),
            selective=_as_bool(d.get("selective"), False),
            selective_logic=SelectiveLogic.AND_ANY,
            add_memo=True,
            order=_as_int(d.get("insertorder"), 100),
            probability=_as_int(d.get("activationPercent"), 100),
            display_index=index,
        ))

    return ParsedLorebook(
        name=name,
        entries=entries,
        settings=LorebookSettings(),
        format=LorebookFormat.RISU,
        original_data=data,
    )


_CONVERTERS: dict[LorebookFormat, Callable[[Any, str], ParsedLorebook]] = {
    LorebookFormat.SILLYTAVERN: convert_sillytavern,
    LorebookFormat.NOVELAI: convert_novelai,
    LorebookFormat.AGNAI: convert_agnai,
    LorebookFormat.RISU: convert_risu,
}


# ============================================================================
# Export
# ============================================================================

def export_sillytavern(lorebook: Any) -> dict[str, Any]:
    """Render a canonical lorebook as a native SillyTavern world info document."""
    entries: dict[str, dict[str, Any]] = {}
    for entry in lorebook.entries:
        d = dict(entry.extra)
        for wire, attr in ENTRY_FIELDS.items():
            value = getattr(entry, attr)
            d[wire] = list(value) if isinstance(value, list) else value
        entries[str(entry.uid)] = d

    doc: dict[str, Any] = {"entries": entries}
    for f in dataclasses.fields(LorebookSettings):
        doc[f.name] = getattr(lorebook.settings, f.name)
    strategy = doc["insertion_strategy"]
    if isinstance(strategy, str) and strategy.upper() in InsertionStrategy.__members__:
        doc["insertion_strategy"] = InsertionStrategy[strategy.upper()].value
    return doc


# ============================================================================
# Helpers
# ============================================================================

def native_uid(key: Any, raw: Any, index: int) -> int:
    """Numeric dict key wins unless it is 0, then the entry's own uid."""
    from_key = _as_int(key, None)
    from_entry = _as_int(raw.get("uid"), None) if isinstance(raw, dict) else None
    for candidate in (from_key, from_entry):
        if candidate:
            return candidate
    if from_key is not None:
        return from_key
    return from_entry if from_entry is not None else index


def list_entry_uid(raw: Any, index: int) -> int:
    """Entries given as an array keep their own uid, else their position."""
    own = _as_int(raw.get("uid"), None) if isinstance(raw, dict) else None
    return own if own is not None else index


def _native_entry(raw: Any, uid: int) -> WorldInfoEntry:
    d = raw if isinstance(raw, dict) else {}
    entry = WorldInfoEntry(uid=uid)
    for wire, attr in ENTRY_FIELDS.items():
        if attr == "uid":
            continue
        if wire in d:
            value = d[wire]
        elif attr in d:
            value = d[attr]
        else:
            continue
        setattr(entry, attr, _coerce_attr(attr, value, getattr(entry, attr)))
    known = set(ENTRY_FIELDS) | set(ENTRY_FIELDS.values())
    entry.extra = {k: v for k, v in d.items() if k not in known}
    return entry


def _coerce_attr(attr: str, value: Any, default: Any) -> Any:
    if attr in _LIST_ATTRS:
        return _coerce_list(value)
    if attr in _STR_ATTRS:
        return _as_str(value)
    if attr in _BOOL_ATTRS:
        return _as_bool(value, default)
    if attr in _OPT_BOOL_ATTRS:
        return None if value is None else _as_bool(value, None)
    if attr in _INT_ATTRS:
        return _as_int(value, default)
    if attr in _OPT_INT_ATTRS:
        return _as_int(value, None)
    if attr == "delay_until_recursion":
        return value if isinstance(value, (bool, int)) else default
    return value


def _native_settings(data: dict) -> LorebookSettings:
    settings = LorebookSettings()
    for f in dataclasses.fields(LorebookSettings):
        value = data.get(f.name)
        if value is None:
            continue
        default = getattr(settings, f.name)
        if f.name == "insertion_strategy":
            setattr(settings, f.name, _strategy_name(value))
        elif isinstance(default, bool):
            setattr(settings, f.name, _as_bool(value, default))
        elif isinstance(default, int):
            setattr(settings, f.name, _as_int(value, default))
    return settings


def _strategy_name(value: Any) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return InsertionStrategy(value).name.lower()
        except ValueError:
            return str(value)
    return str(value)


def _require_list(data: Any, field_name: str, label: str) -> list:
    value = data.get(field_name) if isinstance(data, dict) else None
    if not isinstance(value, list):
        raise FormatError(f'{label} must contain a "{field_name}" array')
    return value


def _coerce_list(val: Any) -> list[str]:
    """Ensure a value is a list of strings (handles comma-separated string)."""
    if isinstance(val, list):
        return [str(v).strip() for v in val if v is not None and str(v).strip()]
    if isinstance(val, str) and val.strip():
        return [s.strip() for s in val.split(",") if s.strip()]
    return []


def _split_keys(val: Any) -> list[str]:
    if not isinstance(val, str):
        return []
    return [k.strip() for k in val.split(",") if k.strip()]


def _as_str(val: Any) -> str:
    return "" if val is None else str(val)


def _as_bool(val: Any, default: Any) -> Any:
    if val is None:
        return default
    if isinstance(val, str):
        return val.strip().lower() in {"1", "true", "yes", "on"}
    return bool(val)


def _as_int(val: Any, default: Any) -> Any:
    if val is None or isinstance(val, bool):
        return default
    if isinstance(val, int):
        return val
    if isinstance(val, float):
        return int(val) if math.isfinite(val) else default
    if isinstance(val, str):
        try:
            return int(val.strip())
        except ValueError:
            try:
                return int(float(val.strip()))
            except (ValueError, OverflowError):
                return default
    return default
