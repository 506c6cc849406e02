"""
Image acquisition for member photographs.

Resolves each member's photo reference (inline data URI or remote URL) to raw
bytes. Remote Cloudinary references are rewritten to request a face-centered
crop at the target cell size. Every failure resolves to ``None`` so the
compositor can fall back to a placeholder tile.
"""

import base64
import binascii
import queue
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import requests
import urllib3
from loguru import logger

from collage_render.config import AppConfig, get_config
from collage_render.models import Member

DATA_URI = re.compile(r'^data:image/[\w.+-]+;base64,(.+)$', re.DOTALL)
CLOUDINARY_URL = re.compile(r'^(https?://res\.cloudinary\.com/[^/]+/)(?:image/upload/)?(.*)$')
VERSION_SEGMENT = re.compile(r'^v\d+/')

FACE_CROP = "c_thumb,g_face,z_0.6,w_{width},h_{height},f_auto,q_auto"
CHUNK_SIZE = 64 * 1024


def apply_face_crop(url: str, width: int, height: int) -> str:
    """
    Rewrite a Cloudinary delivery URL to a face-centered crop of the given size.

    Data URIs and non-Cloudinary URLs are returned unchanged.
    """
    if not url or url.startswith('data:'):
        return url

    match = CLOUDINARY_URL.match(url)
    if not match:
        return url

    base_url, image_path = match.groups()
    transformation = FACE_CROP.format(width=int(width), height=int(height))
    return f"{base_url}image/upload/{transformation}/{VERSION_SEGMENT.sub('', image_path)}"


def decode_data_uri(reference: str) -> Optional[bytes]:
    """Decode a base64 image data URI, or None when malformed."""
    match = DATA_URI.match(reference.strip())
    if not match:
        return None
    try:
        return base64.b64decode(match.group(1), validate=True)
    except (binascii.Error, ValueError):
        return None


def _read_body(response, deadline: float, max_bytes: int = None, chunk_size: int = CHUNK_SIZE) -> Optional[bytes]:
    """
    Read a streamed response body, giving up once the deadline passes or the
    body grows past max_bytes. Each read returns whatever a single socket
    read delivered, so the deadline is checked between partial reads.
    """
    chunks = []
    received = 0
    while True:
        if time.monotonic() > deadline:
            logger.warning(f"Image download exceeded its deadline after {received} bytes")
            return None
        chunk = response.raw.read1(chunk_size, decode_content=True)
        if not chunk:
            return b''.join(chunks)
        received += len(chunk)
        if max_bytes and received > max_bytes:
            logger.warning(f"Image download larger than {max_bytes} bytes, abandoned")
            return None
        chunks.append(chunk)


def fetch_image_bytes(reference: Optional[str], width: int, height: int,
                      timeout: float = 30.0, session: requests.Session = None,
                      user_agent: str = None, max_bytes: int = None) -> Optional[bytes]:
    """
    Resolve one photo reference to bytes; None on any failure.

    ``timeout`` bounds the whole download, not just the connect and each
    read.
    """
    if not reference or not reference.strip():
        return None

    reference = reference.strip()
    if reference.startswith('data:'):
        data = decode_data_uri(reference)
        if data is None:
            logger.warning("Malformed inline photo reference")
        return data

    if not reference.startswith(('http://', 'https://')):
        logger.warning(f"Unsupported photo reference: {reference[:50]}")
        return None

    url = apply_face_crop(reference, width, height)
    http = session or requests
    headers = {'User-Agent': user_agent} if user_agent else None
    deadline = time.monotonic() + timeout

    try:
        with http.get(url, timeout=timeout, headers=headers, stream=True) as response:
            if not response.ok:
                logger.warning(f"Failed to fetch image: {response.status_code} {reference[:50]}")
                return None
            data = _read_body(response, deadline, max_bytes)
    except requests.Timeout:
        logger.warning(f"Image fetch timeout: {reference[:50]}")
        return None
    except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
        logger.warning(f"Image fetch error: {e} - {reference[:50]}")
        return None

    return data


class ImageFetcher:
    """
    Bounded-concurrency photo fetcher.

    A fixed number of workers pull members from a shared queue until it is
    empty, which caps concurrent connections to the delivery network.
    """

    def __init__(self, config: AppConfig = None, max_workers: int = None, timeout: float = None):
        config = config or get_config()
        self.max_workers = max_workers or config.MAX_CONCURRENT_FETCHES
        self.timeout = timeout if timeout is not None else config.IMAGE_FETCH_TIMEOUT_S
        self.user_agent = config.FETCH_USER_AGENT
        self.max_bytes = config.MAX_IMAGE_BYTES

    def fetch_all(self, members: Sequence[Member], width: int, height: int) -> Dict[str, Optional[bytes]]:
        """Map every member key to its photo bytes (None when unavailable)."""
        results: Dict[str, Optional[bytes]] = {}
        if not members:
            return results

        start_time = time.time()
        pending: "queue.Queue[Member]" = queue.Queue()
        for member in members:
            pending.put(member)

        lock = threading.Lock()
        worker_count = min(self.max_workers, len(members))

        def worker():
            with requests.Session() as session:
                while True:
                    try:
                        member = pending.get_nowait()
                    except queue.Empty:
                        return
                    data = fetch_image_bytes(member.photo, width, height, self.timeout,
                                             session=session, user_agent=self.user_agent,
                                             max_bytes=self.max_bytes)
                    logger.debug(f"Photo for {member.key}: {'ok' if data else 'missing'}")
                    with lock:
                        results[member.key] = data

        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="photo-fetch") as executor:
            futures = [executor.submit(worker) for _ in range(worker_count)]
            for future in futures:
                future.result()

        hits = sum(1 for v in results.values() if v)
        elapsed = time.time() - start_time
        logger.info(f"Fetched {hits}/{len(members)} member photos at {width}x{height} "
                    f"with {worker_count} workers in {elapsed:.2f}s")
        return results

    def missing_keys(self, image_map: Dict[str, Optional[bytes]]) -> List[str]:
        return [key for key, data in image_map.items() if not data]
