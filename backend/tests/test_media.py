from unittest.mock import patch

import httpx
import pytest

from listen_together.config import Settings
from listen_together.models.room import MediaItem
from listen_together.services.media import MediaSearch, MediaSearchError

API_RESPONSE = {
    "items": [
        {
            "id": {"kind": "youtube#video", "videoId": "abc123"},
            "snippet": {
                "title": "First",
                "channelTitle": "Chan",
                "thumbnails": {"default": {"url": "d.jpg"}, "medium": {"url": "m.jpg"}},
            },
        },
        {
            "id": {"kind": "youtube#channel", "channelId": "zzz"},
            "snippet": {"title": "A channel"},
        },
        {
            "id": {"kind": "youtube#video", "videoId": "def456"},
            "snippet": {"title": "Second", "channelTitle": "Other", "thumbnails": {"default": {"url": "d2.jpg"}}},
        },
    ]
}

PAGE = """
<html><head>
<title>Fallback title</title>
<meta property="og:title" content="Song Title">
<meta property="og:image" content="https://img.example/cover.jpg">
<meta property="og:site_name" content="SoundSite">
<meta property="og:url" content="https://sound.example/track/1">
</head><body></body></html>
"""


def search_service(handler, api_key="key") -> MediaSearch:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MediaSearch(Settings(YOUTUBE_API_KEY=api_key, SEARCH_MAX_RESULTS=5), client=client)


@pytest.mark.asyncio
async def test_api_search_maps_videos_only():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=API_RESPONSE)

    results = await search_service(handler).search("lofi beats")

    assert seen["params"]["q"] == "lofi beats"
    assert seen["params"]["maxResults"] == "5"
    assert seen["params"]["type"] == "video"
    assert results == [
        MediaItem(external_id="abc123", title="First", thumbnail_ref="m.jpg", source_channel="Chan"),
        MediaItem(external_id="def456", title="Second", thumbnail_ref="d2.jpg", source_channel="Other"),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("status,message", [
    (403, "quota"),
    (400, "Invalid search query"),
    (500, "HTTP 500"),
])
async def test_api_errors(status, message):
    with pytest.raises(MediaSearchError, match=message):
        await search_service(lambda r: httpx.Response(status)).search("x")


@pytest.mark.asyncio
async def test_api_network_error():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(MediaSearchError, match="Network error"):
        await search_service(handler).search("x")


@pytest.mark.asyncio
async def test_empty_query():
    with pytest.raises(MediaSearchError):
        await search_service(lambda r: httpx.Response(200, json={})).search("   ")


@pytest.mark.asyncio
async def test_search_without_api_key_uses_ytdlp():
    items = [MediaItem(external_id="y1", title="From yt-dlp")]
    with patch("listen_together.services.media._ytdlp_search", return_value=items) as ytdlp:
        results = await search_service(lambda r: httpx.Response(500), api_key="").search("query", 3)
    ytdlp.assert_called_once_with("query", 3)
    assert results == items


@pytest.mark.asyncio
async def test_ytdlp_failure_is_search_error():
    with patch("listen_together.services.media._ytdlp_search", side_effect=RuntimeError("boom")):
        with pytest.raises(MediaSearchError):
            await search_service(lambda r: httpx.Response(500), api_key="").search("query")


@pytest.mark.asyncio
async def test_resolve_via_ytdlp():
    item = MediaItem(external_id="abc", title="Resolved")
    with patch("listen_together.services.media._ytdlp_resolve", return_value=item):
        assert await search_service(lambda r: httpx.Response(500)).resolve("https://youtu.be/abc") == item


@pytest.mark.asyncio
async def test_resolve_falls_back_to_page_metadata():
    with patch("listen_together.services.media._ytdlp_resolve", side_effect=RuntimeError("unsupported")):
        item = await search_service(lambda r: httpx.Response(200, text=PAGE)).resolve("https://sound.example/t")
    assert item == MediaItem(
        external_id="https://sound.example/track/1",
        title="Song Title",
        thumbnail_ref="https://img.example/cover.jpg",
        source_channel="SoundSite",
    )


@pytest.mark.asyncio
async def test_resolve_fails_when_nothing_found():
    with patch("listen_together.services.media._ytdlp_resolve", return_value=None):
        with pytest.raises(MediaSearchError, match="Could not resolve"):
            await search_service(lambda r: httpx.Response(404)).resolve("https://nowhere.example")
