"""CBZ (comic book ZIP) validation."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path

from .base import NO_IMAGES_REASON, ValidationResult, is_comic_info, is_image
from .comicinfo import parse_comic_info

logger = logging.getLogger(__name__)

INVALID_ZIP_REASON = "Invalid ZIP structure - file is corrupted or not a valid CBZ"


def validate_cbz(path: Path) -> ValidationResult:
    """Validate a CBZ archive.

    A CBZ must open as a ZIP and contain at least one image entry. Images are
    sorted by name; the first one is the cover candidate.

    Args:
        path: Path to the .cbz file

    Returns:
        ValidationResult with image_count, first_asset and ComicInfo.xml presence
    """
    try:
        archive = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as e:
        logger.warning("Invalid ZIP structure for %s: %s", path, e)
        return ValidationResult.invalid(INVALID_ZIP_REASON)

    with archive:
        members = [info for info in archive.infolist() if not info.is_dir()]
        images = sorted(info.filename for info in members if is_image(info.filename))
        if not images:
            logger.warning("No images in CBZ %s", path)
            return ValidationResult.invalid(NO_IMAGES_REASON)

        comic_info_name = next(
            (info.filename for info in members if is_comic_info(info.filename)), None
        )
        metadata = None
        if comic_info_name is not None:
            metadata = parse_comic_info(archive.read(comic_info_name))

    logger.debug("CBZ %s valid: %d images, ComicInfo=%s", path, len(images), bool(comic_info_name))
    return ValidationResult(
        valid=True,
        image_count=len(images),
        first_asset=images[0],
        has_embedded_metadata=comic_info_name is not None,
        metadata=metadata,
    )


def read_cbz_member(path: Path, member: str) -> bytes:
    """Read one archive member (used for cover extraction)."""
    with zipfile.ZipFile(path) as archive:
        return archive.read(member)
