"""
Workspace client: Notion REST API access for enumeration, page bodies and links.

Responsibility: Talk to the workspace over HTTP and translate every failure
into pipeline errors (NotFoundError for 404, FetchError otherwise). Nothing
above this module sees httpx exceptions or raw Notion payloads.
"""

import asyncio
import logging
from typing import Any, Protocol

import httpx

from workspace_rag.core.config import (
    BLOCK_MAX_DEPTH,
    NOTION_API_KEY,
    NOTION_API_TIMEOUT,
    NOTION_API_URL,
    NOTION_MAX_RETRIES,
    NOTION_PAGE_SIZE,
    NOTION_VERSION,
)
from workspace_rag.core.errors import FetchError, NotFoundError
from workspace_rag.core.models import PageBody, PageEntry, PageType

logger = logging.getLogger(__name__)

# Blocks that are separate pages; their bodies are never inlined into the parent.
_PAGE_BLOCK_TYPES = frozenset({"child_page", "child_database"})

_TEXT_BLOCK_PREFIXES: dict[str, str] = {
    "paragraph": "",
    "heading_1": "",
    "heading_2": "",
    "heading_3": "",
    "bulleted_list_item": "• ",
    "toggle": "",
    "quote": "> ",
    "callout": "",
    "code": "",
}


class WorkspaceClient(Protocol):
    """What the index, cache and retrieval need from a workspace provider."""

    async def list_all_pages(self) -> list[PageEntry]: ...

    async def fetch_page(self, page_id: str) -> PageBody: ...

    async def fetch_page_body(self, page_id: str) -> str: ...

    async def list_related(self, page_id: str) -> list[str]: ...


def normalize_id(raw_id: str) -> str:
    """Dash a bare 32-char Notion id; other ids pass through unchanged."""
    value = (raw_id or "").strip()
    if len(value) == 32 and "-" not in value:
        return f"{value[:8]}-{value[8:12]}-{value[12:16]}-{value[16:20]}-{value[20:]}"
    return value


def rich_text_to_plain(rich_text: list[dict[str, Any]] | None) -> str:
    if not rich_text:
        return ""
    return "".join((t.get("plain_text") or "") for t in rich_text)


def get_object_title(obj: dict[str, Any]) -> str:
    """Title of a page or database object; 'Untitled' when none is set."""
    if obj.get("object") == "database":
        title = rich_text_to_plain(obj.get("title"))
        return title or "Untitled"
    for prop in (obj.get("properties") or {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            title = rich_text_to_plain(prop.get("title"))
            if title:
                return title
    return "Untitled"


def _parent_of(obj: dict[str, Any]) -> tuple[str | None, PageType]:
    parent = obj.get("parent") or {}
    parent_type = parent.get("type")
    if obj.get("object") == "database":
        own_type = PageType.DATABASE
    elif parent_type == "database_id":
        own_type = PageType.DATABASE_ROW
    else:
        own_type = PageType.DOCUMENT
    if parent_type == "page_id":
        return normalize_id(parent.get("page_id", "")), own_type
    if parent_type == "database_id":
        return normalize_id(parent.get("database_id", "")), own_type
    # workspace and block parents are treated as roots
    return None, own_type


def object_to_entry(obj: dict[str, Any]) -> PageEntry:
    parent_id, page_type = _parent_of(obj)
    return PageEntry(
        id=normalize_id(obj.get("id", "")),
        title=get_object_title(obj),
        type=page_type,
        parent_id=parent_id,
        url=obj.get("url"),
    )


def render_block(block: dict[str, Any], number: int | None = None) -> str:
    """Plain-text line for a single block (without its children)."""
    block_type = block.get("type", "")
    data = block.get(block_type) or {}
    if block_type in _TEXT_BLOCK_PREFIXES:
        return _TEXT_BLOCK_PREFIXES[block_type] + rich_text_to_plain(data.get("rich_text"))
    if block_type == "numbered_list_item":
        return f"{number or 1}. " + rich_text_to_plain(data.get("rich_text"))
    if block_type == "to_do":
        mark = "x" if data.get("checked") else " "
        return f"[{mark}] " + rich_text_to_plain(data.get("rich_text"))
    if block_type == "child_page":
        return f"[Page: {data.get('title', 'Untitled')}]"
    if block_type == "child_database":
        return f"[Database: {data.get('title', 'Untitled')}]"
    if block_type == "table_row":
        return " | ".join(rich_text_to_plain(cell) for cell in data.get("cells") or [])
    return ""


class NotionWorkspaceClient:
    """Async Notion client implementing WorkspaceClient."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = NOTION_API_URL,
        timeout: float = NOTION_API_TIMEOUT,
        max_retries: int = NOTION_MAX_RETRIES,
        max_depth: int = BLOCK_MAX_DEPTH,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else NOTION_API_KEY
        self.max_retries = max_retries
        self.max_depth = max_depth
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._databases: set[str] = set()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NotionWorkspaceClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self, method: str, url: str, *, resource_id: str = "", **kwargs: Any
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise FetchError("Notion API is not configured. Set NOTION_API_KEY in .env")
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                logger.warning("[workspace:request] %s %s failed: %s", method, url, e)
                raise FetchError(f"Notion request failed: {e}") from e

            if response.status_code == 429 and attempt < self.max_retries:
                attempt += 1
                delay = _retry_after(response)
                logger.info("[workspace:request] rate limited on %s, retry %d in %.1fs", url, attempt, delay)
                await asyncio.sleep(delay)
                continue
            if response.status_code == 404:
                raise NotFoundError(resource_id or url)
            if response.status_code != 200:
                logger.warning("[workspace:request] Notion error %s: %s", response.status_code, response.text[:200])
                raise FetchError(f"Notion API error {response.status_code}: {response.text[:200]}")
            try:
                return response.json()
            except ValueError as e:
                raise FetchError(f"Notion returned invalid JSON for {url}") from e

    async def list_all_pages(self) -> list[PageEntry]:
        """Enumerate every page, database and database row the integration can see."""
        logger.info("[workspace:list_all_pages] IN")
        entries: list[PageEntry] = []
        databases: set[str] = set()
        cursor: str | None = None
        while True:
            body: dict[str, Any] = {"page_size": NOTION_PAGE_SIZE}
            if cursor:
                body["start_cursor"] = cursor
            data = await self._request("POST", "/search", json=body)
            for obj in data.get("results") or []:
                if obj.get("object") not in ("page", "database") or obj.get("archived"):
                    continue
                entry = object_to_entry(obj)
                if entry.type == PageType.DATABASE:
                    databases.add(entry.id)
                entries.append(entry)
            if not data.get("has_more"):
                break
            cursor = data.get("next_cursor")
        self._databases = databases
        logger.info("[workspace:list_all_pages] OUT pages=%d databases=%d", len(entries), len(databases))
        return entries

    async def _list_children(self, block_id: str) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": NOTION_PAGE_SIZE}
            if cursor:
                params["start_cursor"] = cursor
            data = await self._request(
                "GET", f"/blocks/{block_id}/children", resource_id=block_id, params=params
            )
            blocks.extend(data.get("results") or [])
            if not data.get("has_more"):
                return blocks
            cursor = data.get("next_cursor")

    async def _render_blocks(self, blocks: list[dict[str, Any]], depth: int) -> list[str]:
        lines: list[str] = []
        number = 0
        indent = "  " * depth
        for block in blocks:
            block_type = block.get("type", "")
            number = number + 1 if block_type == "numbered_list_item" else 0
            text = render_block(block, number)
            if text:
                lines.append(f"{indent}{text}")
            if (
                block.get("has_children")
                and block_type not in _PAGE_BLOCK_TYPES
                and depth + 1 < self.max_depth
            ):
                children = await self._list_children(block["id"])
                lines.extend(await self._render_blocks(children, depth + 1))
        return lines

    async def fetch_page(self, page_id: str) -> PageBody:
        """Render a page (or database) and collect its links from the same block listing."""
        page_id = normalize_id(page_id)
        logger.info("[workspace:fetch_page] IN  page_id=%s", page_id)
        if page_id in self._databases:
            data = await self._request("GET", f"/databases/{page_id}", resource_id=page_id)
            parts = [get_object_title(data), rich_text_to_plain(data.get("description"))]
            page = PageBody(content="\n".join(p for p in parts if p), related=())
        else:
            blocks = await self._list_children(page_id)
            page = PageBody(
                content="\n".join(await self._render_blocks(blocks, 0)),
                related=tuple(related_ids(blocks, page_id)),
            )
        logger.info(
            "[workspace:fetch_page] OUT page_id=%s len=%d related=%d", page_id, len(page.content), len(page.related)
        )
        return page

    async def fetch_page_body(self, page_id: str) -> str:
        """Render a page (or database) to indented plain text."""
        return (await self.fetch_page(page_id)).content

    async def list_related(self, page_id: str) -> list[str]:
        """Ids referenced from the page's top-level blocks: sub-pages, links and mentions."""
        page_id = normalize_id(page_id)
        if page_id in self._databases:
            return []
        out = related_ids(await self._list_children(page_id), page_id)
        logger.info("[workspace:list_related] OUT page_id=%s related=%d", page_id, len(out))
        return out


def related_ids(blocks: list[dict[str, Any]], page_id: str) -> list[str]:
    """Sub-page, link_to_page and mention targets of a block list, deduplicated, excluding page_id."""
    related: list[str] = []
    for block in blocks:
        block_type = block.get("type", "")
        data = block.get(block_type) or {}
        if block_type in _PAGE_BLOCK_TYPES:
            related.append(normalize_id(block.get("id", "")))
        elif block_type == "link_to_page":
            target = data.get("page_id") or data.get("database_id")
            if target:
                related.append(normalize_id(target))
        for item in data.get("rich_text") or []:
            mention = item.get("mention") or {}
            ref = (mention.get("page") or mention.get("database") or {}).get("id")
            if ref:
                related.append(normalize_id(ref))
    out: list[str] = []
    for ref in related:
        if ref and ref != page_id and ref not in out:
            out.append(ref)
    return out


def _retry_after(response: httpx.Response) -> float:
    raw = response.headers.get("Retry-After", "")
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return 1.0
