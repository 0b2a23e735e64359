"""Lorebook import: decode, validate, convert, normalize and store."""

from __future__ import annotations

import json
from typing import Any

from loguru import logger

from loreweave.lorebook.errors import FormatError, ValidationError
from loreweave.lorebook.formats import normalize_lorebook, parse_lorebook
from loreweave.lorebook.storage import LorebookStore
from loreweave.lorebook.types import ImportResult, LorebookFormat, ParsedLorebook, ValidationResult
from loreweave.lorebook.validators import validate_lorebook


def decode_lorebook(raw: bytes | str | Any) -> Any:
    """Decode raw bytes or JSON text; anything else is assumed already decoded.

    Raises:
        FormatError: if the input is not valid UTF-8 JSON.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FormatError(f"Lorebook is not UTF-8 text: {e}") from e
    if isinstance(raw, str):
        try:
            return json.loads(raw.lstrip("\ufeff"))
        except json.JSONDecodeError as e:
            raise FormatError(f"Invalid JSON: {e}") from e
    return raw


def load_lorebook(raw: bytes | str | Any, file_name: str) -> tuple[ParsedLorebook, ValidationResult]:
    """Decode, validate, convert and normalize a lorebook without storing it.

    Raises:
        FormatError: undecodable input or no recognizable lorebook shape.
        ValidationError: structural errors; the import must be rejected.
    """
    data = decode_lorebook(raw)
    validation = validate_lorebook(data)
    if not validation.is_valid:
        fmt = validation.format.value if validation.format else None
        raise ValidationError(validation.errors, fmt, validation.warnings)
    parsed = normalize_lorebook(parse_lorebook(data, file_name))
    return parsed, validation


def import_lorebook(
    store: LorebookStore,
    raw: bytes | str | Any,
    file_name: str,
    custom_name: str | None = None,
    source_path: str = "",
) -> ImportResult:
    """Import a lorebook into the store.

    Parse and validation failures are returned in the result rather than
    raised. NameConflictError is raised when no unique name is left.
    """
    try:
        parsed, validation = load_lorebook(raw, file_name)
    except ValidationError as e:
        logger.warning(f"Rejected lorebook '{file_name}': {e}")
        fmt = LorebookFormat(e.format) if e.format else None
        rejected = ValidationResult(is_valid=False, errors=e.errors, warnings=e.warnings, format=fmt)
        return ImportResult(format=fmt, validation=rejected, error=str(e))
    except FormatError as e:
        logger.warning(f"Could not read lorebook '{file_name}': {e}")
        return ImportResult(error=str(e))

    for warning in validation.warnings:
        logger.debug(f"{file_name}: {warning}")

    book = store.create_lorebook(parsed, custom_name=custom_name, source_path=source_path)
    return ImportResult(
        id=book.id,
        name=book.name,
        format=book.format,
        entry_count=book.entry_count,
        validation=validation,
    )
