"""Container validators for supported eBook/comic formats.

Validators are pure with respect to persistent state: they only read the
container and report structural validity plus embedded metadata seeds.

Usage:
    from inkshelf.validators import validate

    result = validate(Path("inbox/vol1.cbz"))
    if result.valid:
        print(result.image_count, result.first_asset)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from inkshelf.models import FileKind

from .base import (
    IMAGE_EXTENSIONS,
    EmbeddedMetadata,
    ValidationResult,
    is_comic_info,
    is_image,
)
from .cbr import read_cbr_member, validate_cbr
from .cbz import read_cbz_member, validate_cbz
from .comicinfo import parse_comic_info
from .epub import parse_opf, read_epub_member, validate_epub

logger = logging.getLogger(__name__)

Validator = Callable[[Path], ValidationResult]

_VALIDATORS: dict[FileKind, Validator] = {
    FileKind.EPUB: validate_epub,
    FileKind.CBZ: validate_cbz,
    FileKind.CBR: validate_cbr,
}

_MEMBER_READERS: dict[FileKind, Callable[[Path, str], bytes]] = {
    FileKind.EPUB: read_epub_member,
    FileKind.CBZ: read_cbz_member,
    FileKind.CBR: read_cbr_member,
}


def get_validator(extension: str) -> Validator | None:
    """Return the validator for a file extension, or None if unsupported."""
    kind = FileKind.from_extension(extension)
    return _VALIDATORS.get(kind) if kind is not None else None


def validate(path: Path) -> ValidationResult:
    """Validate a container, dispatching on its extension.

    Unexpected errors while reading the container become an invalid result
    with a "Validation error: ..." reason.
    """
    validator = get_validator(path.suffix)
    if validator is None:
        return ValidationResult.invalid(f"Unsupported file type: {path.suffix.lower()}")
    try:
        return validator(path)
    except Exception as e:
        logger.error("Validation error for %s: %s", path, e)
        return ValidationResult.invalid(f"Validation error: {e}")


def read_member(path: Path, member: str) -> bytes:
    """Read one member from a supported container."""
    kind = FileKind.from_extension(path.suffix)
    if kind is None:
        raise ValueError(f"Unsupported file type: {path.suffix}")
    return _MEMBER_READERS[kind](path, member)


__all__ = [
    "IMAGE_EXTENSIONS",
    "EmbeddedMetadata",
    "ValidationResult",
    "get_validator",
    "is_comic_info",
    "is_image",
    "parse_comic_info",
    "parse_opf",
    "read_member",
    "validate",
    "validate_cbr",
    "validate_cbz",
    "validate_epub",
]
