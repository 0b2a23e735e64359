"""Lorebook validation: per-format structural checks.

Errors reject an import; warnings are accepted with caveats. Unknown shapes
are validated as native SillyTavern world info rather than rejected outright.
"""

from __future__ import annotations

from typing import Any, Callable

from loreweave.lorebook.formats import detect_format, list_entry_uid, native_uid
from loreweave.lorebook.types import LorebookFormat, ValidationResult

_ENTRY_BOOLEAN_FIELDS = (
    "constant", "selective", "vectorized", "disable",
    "excludeRecursion", "preventRecursion", "addMemo",
    "useProbability", "groupOverride",
)

_ENTRY_NUMBER_FIELDS = (
    "order", "position", "probability", "depth",
    "groupWeight", "displayIndex", "selectiveLogic", "role",
)

_NUMBER_SETTINGS = (
    "scan_depth", "token_budget", "recursion_depth",
    "recursion_steps", "min_activations", "max_depth", "budget_cap",
)

_BOOLEAN_SETTINGS = (
    "recursive", "include_names", "case_sensitive",
    "match_whole_words", "use_group_scoring",
)


def validate_lorebook(data: Any) -> ValidationResult:
    """Detect the format of ``data`` and run that format's structural checks."""
    if not isinstance(data, dict):
        return ValidationResult(
            is_valid=False,
            errors=["Invalid lorebook data: must be an object"],
        )

    fmt = detect_format(data)
    validator = _VALIDATORS.get(fmt, _validate_sillytavern)
    return validator(data)


def is_valid_for_import(data: Any) -> bool:
    return validate_lorebook(data).is_valid


# ============================================================================
# Per-format validators
# ============================================================================

def _validate_sillytavern(data: dict) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    fmt = LorebookFormat.SILLYTAVERN

    raw_entries = data.get("entries")
    if not isinstance(raw_entries, (dict, list)):
        errors.append('Lorebook must contain an "entries" object')
        return ValidationResult(False, errors, warnings, fmt)

    items = raw_entries.items() if isinstance(raw_entries, dict) else enumerate(raw_entries)
    seen_uids: set[Any] = set()
    count = 0
    for index, (key, entry) in enumerate(items):
        count += 1
        errors.extend(_validate_native_entry(entry, key))
        if isinstance(raw_entries, dict):
            uid = native_uid(key, entry, index)
        else:
            uid = list_entry_uid(entry, index)
        if uid in seen_uids:
            warnings.append(f"Entry {key}: duplicate uid {uid}, the later entry wins")
        seen_uids.add(uid)

    if count == 0:
        warnings.append("Lorebook contains no entries")

    for setting in _NUMBER_SETTINGS:
        if setting in data and not _is_number(data[setting]):
            warnings.append(f"Global setting '{setting}' should be a number")

    for setting in _BOOLEAN_SETTINGS:
        if setting in data and not isinstance(data[setting], bool):
            warnings.append(f"Global setting '{setting}' should be a boolean")

    return ValidationResult(not errors, errors, warnings, fmt)


def _validate_native_entry(entry: Any, index: Any) -> list[str]:
    if not isinstance(entry, dict):
        return [f"Entry {index}: must be an object"]

    errors: list[str] = []
    key = entry.get("key")
    if not isinstance(key, (list, str)):
        errors.append(f"Entry {index}: 'key' must be an array or string")

    content = entry.get("content")
    if content is not None and not isinstance(content, str):
        errors.append(f"Entry {index}: 'content' must be a string")

    for field_name in _ENTRY_BOOLEAN_FIELDS:
        if field_name in entry and not isinstance(entry[field_name], bool):
            errors.append(f"Entry {index}: '{field_name}' must be a boolean")

    for field_name in _ENTRY_NUMBER_FIELDS:
        value = entry.get(field_name)
        if value is not None and not _is_number(value):
            errors.append(f"Entry {index}: '{field_name}' must be a number")

    return errors


def _validate_novelai(data: dict) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    fmt = LorebookFormat.NOVELAI

    entries = data.get("entries")
    if not isinstance(entries, list):
        errors.append('NovelAI lorebook must contain an "entries" array')
        return ValidationResult(False, errors, warnings, fmt)

    if not _is_number(data.get("lorebookVersion")):
        warnings.append('NovelAI lorebook should have a "lorebookVersion" number')

    for index, entry in enumerate(entries):
        entry = entry if isinstance(entry, dict) else {}
        if not _non_empty_str(entry.get("text")):
            errors.append(f'Entry {index}: NovelAI entry must have a "text" field')
        if not isinstance(entry.get("keys"), list):
            errors.append(f'Entry {index}: NovelAI entry must have a "keys" array')
        if not isinstance(entry.get("enabled"), bool):
            warnings.append(f'Entry {index}: NovelAI entry should have an "enabled" boolean')

    if not entries:
        warnings.append("Lorebook contains no entries")

    return ValidationResult(not errors, errors, warnings, fmt)


def _validate_agnai(data: dict) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    fmt = LorebookFormat.AGNAI

    if data.get("kind") != "memory":
        errors.append('Agnai Memory Book must have kind="memory"')

    entries = data.get("entries")
    if not isinstance(entries, list):
        errors.append('Agnai Memory Book must contain an "entries" array')
        return ValidationResult(False, errors, warnings, fmt)

    for index, entry in enumerate(entries):
        entry = entry if isinstance(entry, dict) else {}
        if not _non_empty_str(entry.get("entry")):
            errors.append(f'Entry {index}: Agnai entry must have an "entry" field')
        if not isinstance(entry.get("keywords"), list):
            errors.append(f'Entry {index}: Agnai entry must have a "keywords" array')
        if not isinstance(entry.get("enabled"), bool):
            warnings.append(f'Entry {index}: Agnai entry should have an "enabled" boolean')

    if not entries:
        warnings.append("Lorebook contains no entries")

    return ValidationResult(not errors, errors, warnings, fmt)


def _validate_risu(data: dict) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []
    fmt = LorebookFormat.RISU

    if data.get("type") != "risu":
        errors.append('Risu Lorebook must have type="risu"')

    entries = data.get("data")
    if not isinstance(entries, list):
        errors.append('Risu Lorebook must contain a "data" array')
        return ValidationResult(False, errors, warnings, fmt)

    for index, entry in enumerate(entries):
        entry = entry if isinstance(entry, dict) else {}
        if not _non_empty_str(entry.get("key")):
            errors.append(f'Entry {index}: Risu entry must have a "key" string')
        if not _non_empty_str(entry.get("content")):
            errors.append(f'Entry {index}: Risu entry must have a "content" string')
        if not isinstance(entry.get("alwaysActive"), bool):
            warnings.append(f'Entry {index}: Risu entry should have an "alwaysActive" boolean')
        if not _is_number(entry.get("insertorder")):
            warnings.append(f'Entry {index}: Risu entry should have an "insertorder" number')

    if not entries:
        warnings.append("Lorebook contains no entries")

    return ValidationResult(not errors, errors, warnings, fmt)


_VALIDATORS: dict[LorebookFormat, Callable[[dict], ValidationResult]] = {
    LorebookFormat.SILLYTAVERN: _validate_sillytavern,
    LorebookFormat.NOVELAI: _validate_novelai,
    LorebookFormat.AGNAI: _validate_agnai,
    LorebookFormat.RISU: _validate_risu,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)
