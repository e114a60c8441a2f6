"""Link preview extraction.

Finds the first URL in a message and turns the page it points to into a
small card (title, description, image, site name, favicon) read from
OpenGraph / Twitter meta tags, falling back to ``<title>``. Any failure
(timeout, non-2xx, unparsable page) yields ``None``; previews are optional.
"""
import logging
import re
from html.parser import HTMLParser
from typing import Dict, List, Optional
from urllib.parse import urljoin

import httpx

from app.chat.schemas import LinkPreview

logger = logging.getLogger(__name__)

URL_REGEX = re.compile(r"(https?://[^\s<>\"{}|\\^`\[\]]+)", re.IGNORECASE)


def extract_first_url(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = URL_REGEX.search(text)
    return match.group(1) if match else None


class _MetaParser(HTMLParser):
    """Collects <meta>, <link rel=icon> and <title> from the document head."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: Dict[str, str] = {}
        self.icons: List[str] = []
        self.title_parts: List[str] = []
        self._in_title = False

    def handle_starttag(self, tag, attrs):
        attrs = {k.lower(): (v or "") for k, v in attrs}
        if tag == "meta":
            key = (attrs.get("property") or attrs.get("name") or "").lower()
            if key and "content" in attrs and key not in self.meta:
                self.meta[key] = attrs["content"].strip()
        elif tag == "link":
            rel = attrs.get("rel", "").lower()
            if "icon" in rel.split() and attrs.get("href"):
                self.icons.append(attrs["href"])
        elif tag == "title":
            self._in_title = True

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False

    def handle_data(self, data):
        if self._in_title:
            self.title_parts.append(data)


def parse_preview(url: str, html: str) -> Optional[LinkPreview]:
    """Build a preview from an HTML document. None when nothing useful is found."""
    parser = _MetaParser()
    parser.feed(html)
    meta = parser.meta

    title = meta.get("og:title") or meta.get("twitter:title") or "".join(parser.title_parts).strip()
    description = (
        meta.get("og:description") or meta.get("twitter:description") or meta.get("description")
    )
    image = meta.get("og:image") or meta.get("twitter:image")
    if not (title or description or image):
        return None

    favicon = urljoin(url, parser.icons[0]) if parser.icons else urljoin(url, "/favicon.ico")
    return LinkPreview(
        url=meta.get("og:url") or url,
        title=title or None,
        description=description or None,
        image=urljoin(url, image) if image else None,
        siteName=meta.get("og:site_name") or None,
        favicon=favicon,
    )


class LinkPreviewFetcher:
    """Fetches a URL and extracts a LinkPreview from it."""

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        user_agent: str = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
        max_bytes: int = 512 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            headers={"user-agent": user_agent},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.info("Failed to fetch link preview for %s: %s", url, exc)
            return None

        final_url = str(resp.url)
        content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type and "html" not in content_type:
            # Media and other documents: no markup to read, just label the link
            media_type = content_type.split("/")[0] or "Link"
            return LinkPreview(url=final_url, title=media_type)

        html = resp.text[: self._max_bytes]
        try:
            return parse_preview(final_url, html)
        except Exception as exc:
            logger.info("Could not parse link preview for %s: %s", url, exc)
            return None
