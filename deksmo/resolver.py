"""
Resolve a source handle into encoded image bytes plus pixel dimensions.

URLs go through a privileged fetch helper first (a session or browser that
can send cookies and get past hotlink checks). If the helper is missing or
fails, the image is fetched directly without credentials, drawn onto an
off-screen raster and re-encoded as JPEG.
"""

from __future__ import annotations

import base64
import binascii
import io
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import unquote_to_bytes

import requests
from PIL import Image, UnidentifiedImageError

from .errors import DecodeFailed, ResolveFailed
from .log import log_debug, log_verbose
from .model import SourceHandle

# cloudscraper is optional; fall back to requests.Session if unavailable
try:
    import cloudscraper  # type: ignore
except Exception:  # pragma: no cover
    cloudscraper = None

JPEG_QUALITY = 95

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

FetchHelper = Callable[[Dict[str, Any]], Any]


@dataclass
class ResolvedImage:
    data: bytes
    mime: str
    width: int
    height: int

    @property
    def is_jpeg(self) -> bool:
        return self.mime == "image/jpeg"


# -----------------------------------------------------------
# data: URLs and header decoding
# -----------------------------------------------------------
def parse_data_url(url: str) -> Tuple[bytes, Optional[str]]:
    """Split a ``data:`` URL into its payload bytes and declared MIME type."""
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Not a data: URL")
    header, payload = url[5:].split(",", 1)
    params = header.split(";")
    mime = params[0].lower() or None
    if "base64" in params[1:]:
        try:
            return base64.b64decode(payload, validate=False), mime
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e
    return unquote_to_bytes(payload), mime


def to_data_url(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def probe_image(data: bytes) -> Tuple[str, int, int]:
    """Read format and size from the image header without decoding pixels."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailed(f"Could not read image header: {e}", e) from e
    mime = _FORMAT_MIME.get(fmt or "")
    if mime is None:
        raise DecodeFailed(f"Unsupported image format: {fmt}")
    return mime, width, height


def rasterize_to_jpeg(data: bytes, quality: int = JPEG_QUALITY) -> bytes:
    """Draw the image onto a fresh RGB raster and encode it as JPEG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            rgba = img.convert("RGBA")
            raster = Image.new("RGB", rgba.size, "white")
            try:
                raster.paste(rgba, (0, 0), rgba)
                output = io.BytesIO()
                raster.save(output, "JPEG", quality=quality)
            finally:
                raster.close()
                rgba.close()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeFailed(f"Could not decode image: {e}", e) from e
    return output.getvalue()


def ensure_jpeg(resolved: ResolvedImage) -> ResolvedImage:
    """Return ``resolved`` unchanged if it is JPEG, else a re-encoded copy."""
    if resolved.is_jpeg:
        return resolved
    data = rasterize_to_jpeg(resolved.data)
    log_debug(f"    Converted {resolved.mime} to JPEG ({len(data)} bytes)")
    return ResolvedImage(data, "image/jpeg", resolved.width, resolved.height)


# -----------------------------------------------------------
# HTTP sessions and fetch helpers
# -----------------------------------------------------------
def create_scraper(
    user_agent: Optional[str] = None,
    proxy: Optional[str] = None,
    cookies: Optional[str] = None,
):
    """
    Build the HTTP session used by the privileged fetch helper.

    Prefers cloudscraper; on any init error falls back to requests.Session.
    """
    scraper = None
    if cloudscraper is not None:
        try:
            scraper = cloudscraper.create_scraper(
                browser={
                    "browser": "chrome",
                    "platform": "darwin",
                    "mobile": False,
                }
            )
        except Exception as e:
            log_verbose(
                f"  Warning: cloudscraper init failed ({e}). "
                "Falling back to requests.Session()"
            )
    if scraper is None:
        scraper = requests.Session()
    if user_agent:
        scraper.headers["User-Agent"] = user_agent
    if proxy:
        scraper.proxies.update({"http": proxy, "https": proxy})
    if cookies:
        scraper.cookies.update(
            dict(kv.strip().split("=", 1) for kv in cookies.split(";") if "=" in kv)
        )
    return scraper


def create_direct_session(user_agent: Optional[str] = None, proxy: Optional[str] = None):
    """Session for the direct fallback: same user agent and proxy, never cookies."""
    session = requests.Session()
    if user_agent:
        session.headers["User-Agent"] = user_agent
    if proxy:
        session.proxies.update({"http": proxy, "https": proxy})
    return session


class SessionFetchHelper:
    """Answers ``fetchImage`` messages with a credentialed HTTP session."""

    def __init__(self, scraper, timeout: float = 30):
        self.scraper = scraper
        self.timeout = timeout

    def __call__(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if message.get("action") != "fetchImage" or not message.get("url"):
            return {"success": False, "error": "unsupported message"}
        url = message["url"]
        try:
            r = self.scraper.get(url, timeout=self.timeout)
            r.raise_for_status()
        except requests.exceptions.RequestException as e:
            return {"success": False, "error": str(e)}
        mime = (r.headers.get("Content-Type") or "").split(";")[0].strip()
        if not mime.startswith("image/"):
            try:
                mime, _, _ = probe_image(r.content)
            except DecodeFailed:
                mime = "application/octet-stream"
        return {"success": True, "dataUrl": to_data_url(r.content, mime)}


class BrowserFetchHelper:
    """Answers ``fetchImage`` messages from a headless Chromium (playwright)."""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = 30,
        proxy: Optional[str] = None,
    ):
        try:
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise RuntimeError(
                "The browser fetch helper needs playwright. Install it via "
                "'pip install deksmo[browser]' and run 'playwright install chromium'."
            ) from e
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=True,
            proxy={"server": proxy} if proxy else None,
        )
        self._context = self._browser.new_context(
            user_agent=user_agent
            or "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            ignore_https_errors=True,
        )
        self.timeout = timeout

    def __call__(self, message: Dict[str, Any]) -> Dict[str, Any]:
        if message.get("action") != "fetchImage" or not message.get("url"):
            return {"success": False, "error": "unsupported message"}
        response = self._context.request.get(message["url"], timeout=self.timeout * 1000)
        if not response.ok:
            return {"success": False, "error": f"HTTP {response.status}"}
        mime = (response.headers.get("content-type") or "image/jpeg").split(";")[0]
        return {"success": True, "dataUrl": to_data_url(response.body(), mime)}

    def close(self) -> None:
        self._browser.close()
        self._playwright.stop()


# -----------------------------------------------------------
# Resolver
# -----------------------------------------------------------
class ImageResolver:
    def __init__(
        self,
        fetch_helper: Optional[FetchHelper] = None,
        direct_session=None,
        timeout: float = 30,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetch_helper = fetch_helper
        # No cookies ever go on this session: the direct path is anonymous.
        self.direct_session = direct_session or requests.Session()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def resolve(self, handle: SourceHandle) -> ResolvedImage:
        if handle.released:
            raise ResolveFailed("Image source was released")
        if handle.kind == "bytes":
            if handle.data is None:
                raise ResolveFailed("Image source has no data")
            return self._from_bytes(handle.data, handle.mime)
        if handle.kind == "file":
            try:
                data = handle.path.read_bytes()
            except OSError as e:
                raise ResolveFailed(f"Could not read {handle.path}: {e}", e) from e
            return self._from_bytes(data, None)
        if handle.kind == "url":
            return self._from_url(handle.href or "")
        raise ResolveFailed(f"Unknown source kind: {handle.kind}")

    def _from_bytes(self, data: bytes, declared_mime: Optional[str]) -> ResolvedImage:
        mime, width, height = probe_image(data)
        if declared_mime and declared_mime != mime:
            log_debug(f"    Declared {declared_mime} but data is {mime}")
        return ResolvedImage(data, mime, width, height)

    def _from_url(self, url: str) -> ResolvedImage:
        if url.startswith("data:"):
            try:
                data, mime = parse_data_url(url)
            except ValueError as e:
                raise ResolveFailed(str(e), e) from e
            return self._from_bytes(data, mime)

        data = self._privileged_fetch(url)
        if data is not None:
            return self._from_bytes(data, None)
        return self._direct_fetch(url)

    def _privileged_fetch(self, url: str) -> Optional[bytes]:
        if self.fetch_helper is None:
            return None
        try:
            response = self.fetch_helper({"action": "fetchImage", "url": url})
        except Exception as e:
            log_verbose(f"  Fetch helper failed for {url}: {e}. Trying direct load.")
            return None
        if not (
            isinstance(response, dict)
            and response.get("success") is True
            and isinstance(response.get("dataUrl"), str)
        ):
            log_verbose(f"  Fetch helper declined {url}. Trying direct load.")
            return None
        try:
            data, _ = parse_data_url(response["dataUrl"])
        except ValueError as e:
            log_verbose(f"  Fetch helper returned a bad data URL ({e}). Trying direct load.")
            return None
        return data

    def _direct_fetch(self, url: str) -> ResolvedImage:
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries):
            try:
                r = self.direct_session.get(url, timeout=self.timeout)
                r.raise_for_status()
                blob = r.content
                break
            except requests.exceptions.RequestException as e:
                last_error = e
                log_verbose(
                    f"  Warning: Attempt {attempt + 1}/{self.max_retries} failed for {url}: {e}"
                )
                if attempt < self.max_retries - 1:
                    self._sleep(self.retry_delay)
        else:
            raise ResolveFailed(f"Failed to load image: {url}", last_error) from last_error

        try:
            jpeg = rasterize_to_jpeg(blob)
            _, width, height = probe_image(jpeg)
        except DecodeFailed as e:
            raise ResolveFailed(f"Failed to load image: {url}", e) from e
        return ResolvedImage(jpeg, "image/jpeg", width, height)


__all__ = [
    "BrowserFetchHelper",
    "ImageResolver",
    "ResolvedImage",
    "SessionFetchHelper",
    "create_direct_session",
    "create_scraper",
    "ensure_jpeg",
    "parse_data_url",
    "probe_image",
    "rasterize_to_jpeg",
    "to_data_url",
]
