import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup
from yt_dlp import YoutubeDL

from listen_together.config import Settings
from listen_together.models.room import MediaItem

logger = logging.getLogger(__name__)

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"


class MediaSearchError(Exception):
    pass


def _from_api_item(item: Dict[str, Any]) -> MediaItem:
    snippet = item.get("snippet", {})
    thumbnails = snippet.get("thumbnails", {})
    thumbnail = (thumbnails.get("medium") or thumbnails.get("default") or {}).get("url")
    return MediaItem(
        external_id=item["id"]["videoId"],
        title=snippet.get("title", "Unknown"),
        thumbnail_ref=thumbnail,
        source_channel=snippet.get("channelTitle"),
    )


def _from_ytdlp_info(info: Dict[str, Any]) -> MediaItem:
    thumbnail = info.get("thumbnail")
    if not thumbnail and info.get("thumbnails"):
        thumbnail = info["thumbnails"][-1].get("url")
    return MediaItem(
        external_id=info["id"],
        title=info.get("title") or "Unknown",
        thumbnail_ref=thumbnail,
        source_channel=info.get("channel") or info.get("uploader"),
    )


def _ytdlp_search(query: str, max_results: int) -> List[MediaItem]:
    ydl_opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "extract_flat": True,
    }
    with YoutubeDL(ydl_opts) as ydl:
        info = ydl.extract_info(f"ytsearch{max_results}:{query}", download=False)
    return [_from_ytdlp_info(e) for e in (info or {}).get("entries") or [] if e and e.get("id")]


def _ytdlp_resolve(url: str) -> Optional[MediaItem]:
    ydl_opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "noplaylist": True,
    }
    with YoutubeDL(ydl_opts) as ydl:
        info = ydl.extract_info(url, download=False)
    if not info:
        return None
    # Search results and playlists: take the first entry
    if "entries" in info:
        entries = [e for e in info["entries"] if e]
        if not entries:
            return None
        info = entries[0]
    return _from_ytdlp_info(info)


def _scrape_metadata(url: str, html: str) -> Optional[MediaItem]:
    soup = BeautifulSoup(html, "html.parser")

    def meta(prop):
        tag = soup.find("meta", property=prop)
        return tag["content"] if tag and tag.get("content") else None

    title = meta("og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        return None
    return MediaItem(
        external_id=meta("og:url") or url,
        title=title,
        thumbnail_ref=meta("og:image"),
        source_channel=meta("og:site_name"),
    )


class MediaSearch:
    """
    Search provider. Uses the YouTube Data API when a key is configured and
    falls back to yt-dlp search otherwise.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.YOUTUBE_API_KEY
        self.max_results = settings.SEARCH_MAX_RESULTS
        self.timeout = settings.HTTP_TIMEOUT
        self._client = client

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await client.get(url, **kwargs)

    async def search(self, query: str, max_results: Optional[int] = None) -> List[MediaItem]:
        query = (query or "").strip()
        if not query:
            raise MediaSearchError("Search query required")
        max_results = max_results or self.max_results

        if not self.api_key:
            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(None, _ytdlp_search, query, max_results)
            except Exception as e:
                logger.error(f"yt-dlp search error: {e}")
                raise MediaSearchError("Search failed") from e

        try:
            response = await self._get(f"{YOUTUBE_API_URL}/search", params={
                "part": "snippet",
                "q": query,
                "type": "video",
                "maxResults": max_results,
                "key": self.api_key,
            })
        except httpx.RequestError as e:
            logger.error(f"YouTube search failed for '{query}': {e}")
            raise MediaSearchError("Network error: unable to connect to YouTube API") from e

        if response.status_code == 403:
            raise MediaSearchError("YouTube API quota exceeded or invalid API key")
        if response.status_code == 400:
            raise MediaSearchError("Invalid search query")
        if response.is_error:
            raise MediaSearchError(f"YouTube API error: HTTP {response.status_code}")

        items = [i for i in response.json().get("items", []) if i.get("id", {}).get("videoId")]
        results = [_from_api_item(i) for i in items]
        logger.debug(f"Search for '{query}' returned {len(results)} results")
        return results

    async def resolve(self, url: str) -> MediaItem:
        """Resolve a pasted URL to a MediaItem, via yt-dlp or the page's OpenGraph tags."""
        loop = asyncio.get_running_loop()
        try:
            item = await loop.run_in_executor(None, _ytdlp_resolve, url)
            if item:
                return item
        except Exception as e:
            logger.info(f"yt-dlp could not resolve {url}, trying page metadata: {e}")

        try:
            response = await self._get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Metadata scraping error: {e}")
            raise MediaSearchError("Could not resolve URL") from e

        item = _scrape_metadata(url, response.text)
        if item is None:
            raise MediaSearchError("Could not resolve URL")
        return item
