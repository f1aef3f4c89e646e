"""CBR (comic book RAR) validation via rarfile.

Listing RAR headers is pure Python; reading member data (ComicInfo.xml,
cover extraction) needs an unrar-compatible tool on PATH. A missing tool
only costs the embedded metadata, never validity.
"""

from __future__ import annotations

import logging
from pathlib import Path

import rarfile

from .base import NO_IMAGES_REASON, EmbeddedMetadata, ValidationResult, is_comic_info, is_image
from .comicinfo import parse_comic_info

logger = logging.getLogger(__name__)

INVALID_RAR_REASON = "Invalid RAR structure - file is corrupted or not a valid CBR"


def _read_comic_info(archive: rarfile.RarFile, name: str, path: Path) -> EmbeddedMetadata | None:
    try:
        return parse_comic_info(archive.read(name))
    except rarfile.Error as e:
        logger.warning("Cannot read ComicInfo.xml from %s: %s", path, e)
        return None


def validate_cbr(path: Path) -> ValidationResult:
    """Validate a CBR archive.

    Args:
        path: Path to the .cbr file

    Returns:
        ValidationResult with image_count, first_asset and ComicInfo.xml presence
    """
    if not path.is_file():
        logger.warning("CBR file not found: %s", path)
        return ValidationResult.invalid("File not found")

    try:
        archive = rarfile.RarFile(str(path))
    except (rarfile.Error, OSError) as e:
        logger.warning("Invalid RAR structure for %s: %s", path, e)
        return ValidationResult.invalid(INVALID_RAR_REASON)

    with archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        if not members:
            logger.warning("Empty CBR archive: %s", path)
            return ValidationResult.invalid("Empty archive - CBR contains no files")

        images = sorted(info.filename for info in members if is_image(info.filename))
        if not images:
            logger.warning("No images in CBR %s", path)
            return ValidationResult.invalid(NO_IMAGES_REASON)

        comic_info_name = next(
            (info.filename for info in members if is_comic_info(info.filename)), None
        )
        metadata = (
            _read_comic_info(archive, comic_info_name, path) if comic_info_name else None
        )

    logger.debug("CBR %s valid: %d images, ComicInfo=%s", path, len(images), bool(comic_info_name))
    return ValidationResult(
        valid=True,
        image_count=len(images),
        first_asset=images[0],
        has_embedded_metadata=comic_info_name is not None,
        metadata=metadata,
    )


def read_cbr_member(path: Path, member: str) -> bytes:
    """Read one archive member (used for cover extraction)."""
    with rarfile.RarFile(str(path)) as archive:
        return archive.read(member)
