import os
import re
import logging
import asyncio
from typing import Optional, Dict, Any, List
from yt_dlp import YoutubeDL

from app.services.queue import default_thumbnail

logger = logging.getLogger(__name__)

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_URL_PATTERNS = [
    re.compile(r"(?:v=|/embed/|/shorts/|/live/)([A-Za-z0-9_-]{11})"),
    re.compile(r"youtu\.be/([A-Za-z0-9_-]{11})"),
]


def extract_media_id(value: str) -> Optional[str]:
    """Accepts a bare YouTube id or any of the usual watch/share URLs."""
    value = (value or "").strip()
    if _VIDEO_ID.match(value):
        return value
    for pattern in _URL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None


def _ydl_opts() -> Dict[str, Any]:
    opts = {
        'quiet': True,
        'skip_download': True,
        'noplaylist': True,
        'extract_flat': 'in_playlist',
        'source_address': '0.0.0.0', # bind to ipv4
    }
    proxy_url = os.getenv('PROXY_URL')
    if proxy_url:
        opts['proxy'] = proxy_url
    return opts


def _to_result(info: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    media_id = info.get('id')
    if not media_id:
        return None
    thumbnail = info.get('thumbnail')
    if not thumbnail and info.get('thumbnails'):
        thumbnail = info['thumbnails'][-1].get('url')
    return {
        "id": media_id,
        "title": info.get('title') or 'Unknown title',
        "thumbnail": thumbnail or default_thumbnail(media_id),
        "channel": info.get('channel') or info.get('uploader'),
        "duration": info.get('duration'),
    }


def _search(query: str, limit: int) -> List[Dict[str, Any]]:
    with YoutubeDL(_ydl_opts()) as ydl:
        try:
            info = ydl.extract_info(f"ytsearch{limit}:{query}", download=False)
        except Exception as e:
            logger.error(f"yt-dlp search error: {e}")
            return []
    results = []
    for entry in info.get('entries') or []:
        result = _to_result(entry)
        if result:
            results.append(result)
    return results


def _lookup(media_id: str) -> Optional[Dict[str, Any]]:
    with YoutubeDL(_ydl_opts()) as ydl:
        try:
            info = ydl.extract_info(f"https://www.youtube.com/watch?v={media_id}", download=False)
        except Exception as e:
            logger.error(f"yt-dlp extraction error: {e}")
            return None
    return _to_result(info)


async def search_media(query: str, limit: int = 10) -> List[Dict[str, Any]]:
    """
    Searches YouTube using yt-dlp in a thread pool to avoid blocking.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _search, query, limit)


async def resolve_media(value: str) -> Optional[Dict[str, Any]]:
    """
    Resolves a media id or URL to {id, title, thumbnail, ...}.
    """
    media_id = extract_media_id(value)
    if not media_id:
        return None
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _lookup, media_id)
