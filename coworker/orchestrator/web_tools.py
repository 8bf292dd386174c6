"""Web access for agents: page fetching as markdown and Brave web search."""

import logging
import re
from typing import Any, Optional

import httpx
from bs4 import BeautifulSoup
from markdownify import MarkdownConverter
from pydantic import BaseModel

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
TRUNCATION_MARKER = "\n\n[Content truncated - original page was longer]"

SEARCH_DISABLED_MESSAGE = (
    "Web search is disabled. To enable:\n"
    "1. Get a free Brave Search API key from https://brave.com/search/api/\n"
    "2. Add to ~/PersonalAssistant/config/settings.json:\n"
    '   "brave_search_api_key": "BSA..."\n'
    '   "web_search_enabled": true\n'
    "3. Restart the app\n\n"
    "Free tier: 2000 searches/month"
)

CHROME_TAGS = ["script", "style", "nav", "header", "footer", "iframe", "noscript"]

_BLANK_LINES_RE = re.compile(r"\n{3,}")


class FetchedPage(BaseModel):
    url: str
    content: str
    size: int
    truncated: bool = False


class SearchResult(BaseModel):
    position: int
    title: str
    url: str
    description: str = ""


def html_to_markdown(html: str, max_chars: int) -> tuple[str, bool]:
    """
    Strip page chrome from HTML and convert the rest to markdown.

    Args:
        html: Raw page HTML
        max_chars: Maximum characters of markdown to keep

    Returns:
        Tuple of (markdown, truncated)
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(CHROME_TAGS):
        # Tags nested inside an already removed tag are gone with it
        if not tag.decomposed:
            tag.decompose()

    markdown = MarkdownConverter(heading_style="ATX").convert_soup(soup)
    markdown = _BLANK_LINES_RE.sub("\n\n", markdown).strip()

    if len(markdown) > max_chars:
        return markdown[:max_chars] + TRUNCATION_MARKER, True
    return markdown, False


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):g}MB"
    if size >= 1024:
        return f"{size / 1024:g}KB"
    return f"{size} bytes"


class WebClient:
    """Async HTTP client shared by the fetch_url and web_search tools."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_bytes: int = 2 * 1024 * 1024,
        max_chars: int = 50 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize web client.

        Args:
            timeout: Per-request timeout in seconds
            max_bytes: Largest response body fetch_page accepts
            max_chars: Markdown length after which pages are truncated
            transport: Optional transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_chars = max_chars
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": "Mozilla/5.0 (compatible; CoworkerAgent/1.0)"}
        )

    async def fetch_page(self, url: str) -> FetchedPage:
        """
        Fetch a web page and return its main content as markdown.

        Args:
            url: http:// or https:// URL

        Returns:
            FetchedPage with markdown content

        Raises:
            WebToolError: On invalid URL, network failure, non-200 status,
                oversized body or timeout
        """
        if not url.startswith(("http://", "https://")):
            raise WebToolError("URL must start with http:// or https://")

        logger.info(f"Fetching URL: {url}")
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise WebToolError(f"HTTP {response.status_code}: {response.reason_phrase}")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise WebToolError(f"Response too large (max {_format_size(self.max_bytes)})")
                encoding = response.encoding or "utf-8"

        except httpx.TimeoutException as e:
            raise WebToolError(f"Request timeout ({self.timeout:g} seconds)") from e
        except httpx.HTTPError as e:
            raise WebToolError(f"Network error: {e}") from e

        html = bytes(body).decode(encoding, errors="replace")
        content, truncated = html_to_markdown(html, self.max_chars)

        logger.info(f"Fetched {len(content)} characters from {url}")
        return FetchedPage(url=url, content=content, size=len(content), truncated=truncated)

    async def search(self, query: str, count: int, api_key: str) -> list[SearchResult]:
        """
        Run a Brave web search.

        Args:
            query: Search query
            count: Number of results to request (1-10)
            api_key: Brave Search subscription token

        Returns:
            Ranked search results

        Raises:
            WebToolError: On API, network or parse failure
        """
        logger.info(f"Searching web for: \"{query}\" (count: {count})")
        try:
            response = await self._client.get(
                BRAVE_SEARCH_URL,
                params={"q": query, "count": count},
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": api_key,
                }
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()

        except httpx.HTTPStatusError as e:
            raise WebToolError(f"Brave Search API error: HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise WebToolError(f"Brave Search API timeout ({self.timeout:g} seconds)") from e
        except httpx.HTTPError as e:
            raise WebToolError(f"Brave Search API error: {e}") from e
        except ValueError as e:
            raise WebToolError(f"Failed to parse search results: {e}") from e

        results = (data.get("web") or {}).get("results") or []
        return [
            SearchResult(
                position=index,
                title=result.get("title", ""),
                url=result.get("url", ""),
                description=result.get("description") or ""
            )
            for index, result in enumerate(results, start=1)
        ]

    async def aclose(self) -> None:
        await self._client.aclose()


class WebToolError(Exception):
    """Raised when a web request made on behalf of an agent fails."""
    pass
