"""EPUB container validation and OPF metadata extraction.

An EPUB must be a ZIP with:
- a ``mimetype`` member containing ``application/epub+zip``
- ``META-INF/container.xml`` naming a rootfile (the OPF package document)
- that OPF present in the archive and parseable
"""

from __future__ import annotations

import logging
import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path

from .base import EmbeddedMetadata, ValidationResult, is_image

logger = logging.getLogger(__name__)

# XML namespaces
NS_DC = "http://purl.org/dc/elements/1.1/"
NS_OPF = "http://www.idpf.org/2007/opf"

EPUB_MIMETYPE = "application/epub+zip"
CONTAINER_PATH = "META-INF/container.xml"

_ISBN_PREFIX_RE = re.compile(r"(?:urn:isbn:|isbn[:\s]+)([\d-]{10,17})", re.IGNORECASE)
_ISBN_STANDALONE_RE = re.compile(r"\b(97[89]\d{10})\b")
_ISBN_DIGITS_RE = re.compile(r"^\d{10}$|^\d{13}$")


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _attr(elem: ET.Element, name: str) -> str | None:
    """Read an attribute with or without the OPF namespace."""
    return elem.get(f"{{{NS_OPF}}}{name}") or elem.get(name)


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    return text.strip() or None


def extract_isbn(identifiers: list[ET.Element]) -> str | None:
    """Pick an ISBN from dc:identifier elements.

    Order: opf:scheme="ISBN", then urn:isbn:/isbn: prefixes, then a bare
    13-digit 978/979 number.
    """
    for ident in identifiers:
        text = _clean(ident.text)
        if not text:
            continue

        scheme = _attr(ident, "scheme")
        if scheme and scheme.lower() == "isbn":
            digits = re.sub(r"[-\s]", "", text)
            if _ISBN_DIGITS_RE.match(digits):
                return digits

        if match := _ISBN_PREFIX_RE.search(text):
            return match.group(1).replace("-", "")

        if match := _ISBN_STANDALONE_RE.search(text):
            return match.group(1)
    return None


def _creator_roles(metadata: ET.Element) -> dict[str, str]:
    """EPUB 3 ``<meta refines="#id" property="role">`` values by creator id."""
    roles: dict[str, str] = {}
    for meta in metadata.iter():
        if _local(meta.tag) != "meta" or meta.get("property") != "role":
            continue
        refines = (meta.get("refines") or "").lstrip("#")
        if refines and meta.text:
            roles[refines] = meta.text.strip()
    return roles


def parse_opf(content: bytes | str) -> tuple[EmbeddedMetadata, str | None]:
    """Parse an OPF package document.

    Args:
        content: OPF XML

    Returns:
        Tuple of (metadata, cover href relative to the OPF) where href is None
        when no cover is declared

    Raises:
        ET.ParseError: Malformed XML
    """
    root = ET.fromstring(content)
    metadata = next((e for e in root.iter() if _local(e.tag) == "metadata"), None)
    manifest = next((e for e in root.iter() if _local(e.tag) == "manifest"), None)

    result = EmbeddedMetadata()
    if metadata is not None:
        result.title = _clean(metadata.findtext(f"{{{NS_DC}}}title"))
        result.description = _clean(metadata.findtext(f"{{{NS_DC}}}description"))
        result.publisher = _clean(metadata.findtext(f"{{{NS_DC}}}publisher"))
        result.language = _clean(metadata.findtext(f"{{{NS_DC}}}language"))
        result.publication_date = _clean(metadata.findtext(f"{{{NS_DC}}}date"))

        refined_roles = _creator_roles(metadata)
        authors = []
        for creator in metadata.findall(f"{{{NS_DC}}}creator"):
            role = _attr(creator, "role") or refined_roles.get(creator.get("id", ""))
            name = _clean(creator.text)
            if name and (not role or role == "aut"):
                authors.append(name)
        result.author = ", ".join(authors) or None

        result.isbn = extract_isbn(metadata.findall(f"{{{NS_DC}}}identifier"))
        result.genres = [
            text for s in metadata.findall(f"{{{NS_DC}}}subject") if (text := _clean(s.text))
        ]

    return result, _cover_href(metadata, manifest)


def _cover_href(metadata: ET.Element | None, manifest: ET.Element | None) -> str | None:
    if manifest is None:
        return None
    items = [e for e in manifest if _local(e.tag) == "item"]

    cover_id = None
    if metadata is not None:
        for meta in metadata.iter():
            if _local(meta.tag) == "meta" and meta.get("name") == "cover":
                cover_id = meta.get("content")
                break
    if cover_id is None:
        for item in items:
            if "cover-image" in (item.get("properties") or "").split():
                cover_id = item.get("id")
                break
    if cover_id is None:
        return None

    item = next((i for i in items if i.get("id") == cover_id), None)
    return item.get("href") if item is not None else None


def _rootfile_path(container_xml: bytes) -> str | None:
    root = ET.fromstring(container_xml)
    for elem in root.iter():
        if _local(elem.tag) == "rootfile" and elem.get("full-path"):
            return elem.get("full-path")
    return None


def validate_epub(path: Path) -> ValidationResult:
    """Validate an EPUB container and extract its Dublin Core metadata.

    Args:
        path: Path to the .epub file

    Returns:
        ValidationResult; first_asset is the declared cover image member, if any
    """
    try:
        archive = zipfile.ZipFile(path)
    except (zipfile.BadZipFile, OSError) as e:
        logger.warning("Invalid ZIP structure for %s: %s", path, e)
        return ValidationResult.invalid("Invalid ZIP structure")

    with archive:
        names = set(archive.namelist())

        if "mimetype" not in names:
            logger.warning("Missing mimetype file in %s", path)
            return ValidationResult.invalid("Missing mimetype file - not a valid EPUB")

        mimetype = archive.read("mimetype").decode("utf-8", errors="replace").strip()
        if mimetype != EPUB_MIMETYPE:
            logger.warning("Invalid mimetype in %s: %r", path, mimetype)
            return ValidationResult.invalid(
                f'Invalid mimetype: expected "{EPUB_MIMETYPE}", found "{mimetype}"'
            )

        if CONTAINER_PATH not in names:
            logger.warning("Missing container.xml in %s", path)
            return ValidationResult.invalid("Missing META-INF/container.xml - not a valid EPUB")

        try:
            opf_path = _rootfile_path(archive.read(CONTAINER_PATH))
        except ET.ParseError as e:
            logger.warning("Malformed container.xml in %s: %s", path, e)
            return ValidationResult.invalid(f"Malformed META-INF/container.xml: {e}")
        if not opf_path:
            logger.warning("Cannot find rootfile in container.xml of %s", path)
            return ValidationResult.invalid("Cannot find rootfile path in container.xml")

        if opf_path not in names:
            logger.warning("Missing OPF %s in %s", opf_path, path)
            return ValidationResult.invalid(f'Missing content.opf at path "{opf_path}"')

        try:
            metadata, cover_href = parse_opf(archive.read(opf_path))
        except ET.ParseError as e:
            logger.warning("Malformed OPF in %s: %s", path, e)
            return ValidationResult.invalid(f"Malformed package document: {e}")

        first_asset = None
        if cover_href:
            candidate = posixpath.normpath(posixpath.join(posixpath.dirname(opf_path), cover_href))
            if candidate in names:
                first_asset = candidate
            elif cover_href in names:
                first_asset = cover_href

        image_count = sum(1 for name in names if is_image(name))

    logger.debug("EPUB %s valid (opf=%s, cover=%s)", path, opf_path, first_asset)
    return ValidationResult(
        valid=True,
        image_count=image_count,
        first_asset=first_asset,
        has_embedded_metadata=bool(metadata.title or metadata.author),
        metadata=metadata,
    )


def read_epub_member(path: Path, member: str) -> bytes:
    """Read one archive member (used for cover extraction)."""
    with zipfile.ZipFile(path) as archive:
        return archive.read(member)
