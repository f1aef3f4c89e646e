"""Shared pytest fixtures and helpers for inkshelf tests."""

from __future__ import annotations

import json
import zipfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from inkshelf.broadcaster import EventBroadcaster
from inkshelf.enrichment.covers import CoverStore
from inkshelf.enrichment.sources.base import DEFAULT_SEARCH_LIMIT, MetadataSource, SearchQuery
from inkshelf.env_settings import SourceEnvSettings, clear_env_settings_cache
from inkshelf.models import ContentCategory, MetadataCandidate, Principal, Role
from inkshelf.storage import ContentRepository, Database

# A JPEG-ish payload large enough to pass the placeholder size check
FAKE_IMAGE = b"\xff\xd8\xff\xe0" + b"\x00" * 4096

ADMIN = Principal(id=1, username="admin", role=Role.ADMIN)
READER = Principal(id=2, username="reader", role=Role.USER)
SESSIONS = {"admin-token": ADMIN, "reader-token": READER}


# =============================================================================
# Archive builders
# =============================================================================

CONTAINER_XML = """<?xml version="1.0"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    {metadata}
    <meta name="cover" content="cover-img"/>
  </metadata>
  <manifest>
    <item id="cover-img" href="images/cover.jpg" media-type="image/jpeg"/>
    <item id="ch1" href="ch1.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
</package>
"""


def make_opf(
    title: str | None = "Dune",
    author: str | None = "Frank Herbert",
    isbn: str | None = None,
    extra: str = "",
) -> str:
    parts = []
    if title:
        parts.append(f"<dc:title>{title}</dc:title>")
    if author:
        parts.append(f'<dc:creator opf:role="aut">{author}</dc:creator>')
    if isbn:
        parts.append(f'<dc:identifier opf:scheme="ISBN">{isbn}</dc:identifier>')
    parts.append(extra)
    return OPF_TEMPLATE.format(metadata="\n    ".join(parts))


def make_epub(
    path: Path,
    *,
    mimetype: str | None = "application/epub+zip",
    container: bool = True,
    opf_path: str = "OEBPS/content.opf",
    opf: str | None = None,
    write_opf: bool = True,
    cover: bool = True,
) -> Path:
    """Write a minimal EPUB. Every structural piece can be left out or broken."""
    with zipfile.ZipFile(path, "w") as zf:
        if mimetype is not None:
            zf.writestr("mimetype", mimetype, compress_type=zipfile.ZIP_STORED)
        if container:
            zf.writestr("META-INF/container.xml", CONTAINER_XML.format(opf_path=opf_path))
        if write_opf:
            zf.writestr(opf_path, opf if opf is not None else make_opf())
        if cover:
            zf.writestr("OEBPS/images/cover.jpg", FAKE_IMAGE)
        zf.writestr("OEBPS/ch1.xhtml", "<html><body><p>Chapter 1</p></body></html>")
    return path


def make_comic_info(**fields: str) -> str:
    body = "".join(f"<{k}>{v}</{k}>" for k, v in fields.items())
    return f'<?xml version="1.0" encoding="utf-8"?><ComicInfo>{body}</ComicInfo>'


def make_cbz(
    path: Path,
    *,
    images: tuple[str, ...] = ("002.jpg", "001.jpg"),
    comic_info: str | None = None,
    extra: tuple[str, ...] = (),
) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name in images:
            zf.writestr(name, FAKE_IMAGE)
        for name in extra:
            zf.writestr(name, "not an image")
        if comic_info is not None:
            zf.writestr("ComicInfo.xml", comic_info)
    return path


# =============================================================================
# Subscribers
# =============================================================================


class FakeSubscriber:
    """Records every message; can be told to fail sends or pings."""

    def __init__(self, *, fail_send: bool = False, fail_ping: bool = False) -> None:
        self.messages: list[str] = []
        self.pings = 0
        self.closed: tuple[int, str] | None = None
        self.fail_send = fail_send
        self.fail_ping = fail_ping

    async def send(self, message: str) -> None:
        if self.fail_send:
            raise ConnectionError("socket closed")
        self.messages.append(message)

    async def ping(self) -> None:
        if self.fail_ping:
            raise ConnectionError("socket closed")
        self.pings += 1

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.messages]

    def event_types(self) -> list[str]:
        return [e["type"] for e in self.events()]


def validate_session(token: str) -> Principal | None:
    return SESSIONS.get(token)


# =============================================================================
# Sources
# =============================================================================


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _unused_transport(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected HTTP request: {request.url}")


class FakeSource(MetadataSource):
    """In-memory source returning canned candidates or raising a canned error."""

    def __init__(
        self,
        name: str,
        *,
        category: ContentCategory = ContentCategory.BOOK,
        priority: int = 10,
        results: list[MetadataCandidate] | None = None,
        error: Exception | None = None,
        configured: bool = True,
        label: str | None = None,
    ) -> None:
        super().__init__(SourceEnvSettings(), client=mock_client(_unused_transport))
        self.name = name  # type: ignore[misc]
        self.label = label or name.title()  # type: ignore[misc]
        self.category = category  # type: ignore[misc]
        self.priority = priority  # type: ignore[misc]
        self.results = results or []
        self.error = error
        self._configured = configured
        self.queries: list[SearchQuery] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def search_title(
        self, query: SearchQuery, *, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[MetadataCandidate]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)[:limit]


def candidate(source: str = "fake", **fields: Any) -> MetadataCandidate:
    data: dict[str, Any] = {"external_id": "ext-1", "title": "Dune", "author": "Frank Herbert"}
    data.update(fields)
    return MetadataCandidate(source=source, **data)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the developer's environment out of settings-based tests."""
    for name in (
        "WATCH_DIR",
        "DATABASE_URL",
        "LOG_LEVEL",
        "GOOGLE_BOOKS_API_KEY",
        "MAL_CLIENT_ID",
        "INKSHELF_DATA_DIR",
        "INKSHELF_SCAN_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_env_settings_cache()
    yield
    clear_env_settings_cache()


@pytest.fixture
def database() -> Iterator[Database]:
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def repository(database: Database) -> ContentRepository:
    return ContentRepository(database)


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster(validate_session)


@pytest.fixture
def subscriber() -> FakeSubscriber:
    return FakeSubscriber()


@pytest.fixture
def covers(tmp_path: Path) -> CoverStore:
    return CoverStore(
        tmp_path / "data",
        client=mock_client(lambda request: httpx.Response(200, content=FAKE_IMAGE)),
    )
