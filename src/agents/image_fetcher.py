"""
Image Fetcher: product photos for quote line items
=====================================================
Downloads the catalog photo of each quoted product so it can be embedded in
the document. A photo is a nice-to-have: every failure (no code, no catalog
row, no URL, network error, timeout, non-2xx, non-image body) produces a
failed result and the layout draws a "no photo" placeholder instead.

Results use one shape everywhere:
    {"ok": True,  "data": bytes, "content_type": "image/png"}
    {"ok": False, "error": "timeout"}
"""
import logging
import mimetypes
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urlsplit

import requests

from src.core import paths
from src.core.errors import RemoteFetchFailed, StoreUnavailable

log = logging.getLogger("quotedesk.image_fetcher")

MAX_TIMEOUT = 10.0
IMAGE_FETCH_TIMEOUT = min(float(os.environ.get("IMAGE_FETCH_TIMEOUT", MAX_TIMEOUT)), MAX_TIMEOUT)
IMAGE_FETCH_WORKERS = int(os.environ.get("IMAGE_FETCH_WORKERS", 4))
MAX_IMAGE_BYTES = 8 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "image/jpeg"
TEMP_IMG_DIR = paths.TEMP_IMG_DIR

USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36")


def _get_session() -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    })
    return s


def _fail(reason: str) -> dict:
    return {"ok": False, "error": reason}


def _content_type(resp) -> str:
    ctype = (resp.headers.get("Content-Type") or "").split(";")[0].strip().lower()
    if not ctype or ctype == "application/octet-stream":
        return DEFAULT_CONTENT_TYPE
    if not ctype.startswith("image/"):
        raise RemoteFetchFailed(f"not_an_image:{ctype}")
    return ctype


def _download(url: str, tmp_path: str, timeout: float, session) -> dict:
    """Stream `url` into tmp_path and read it back. Raises RemoteFetchFailed."""
    try:
        resp = session.get(url, timeout=timeout, stream=True)
    except requests.Timeout as e:
        raise RemoteFetchFailed("timeout") from e
    except requests.RequestException as e:
        raise RemoteFetchFailed(f"network:{type(e).__name__}") from e

    try:
        if not 200 <= resp.status_code < 300:
            raise RemoteFetchFailed(f"http_{resp.status_code}")
        content_type = _content_type(resp)
        size = 0
        with open(tmp_path, "wb") as f:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                size += len(chunk)
                if size > MAX_IMAGE_BYTES:
                    raise RemoteFetchFailed("too_large")
                f.write(chunk)
    except requests.RequestException as e:
        raise RemoteFetchFailed(f"network:{type(e).__name__}") from e
    finally:
        resp.close()

    with open(tmp_path, "rb") as f:
        data = f.read()
    if not data:
        raise RemoteFetchFailed("empty_body")
    return {"ok": True, "data": data, "content_type": content_type}


def extension_for(content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type or "") or ".jpg"
    return ".jpg" if ext in (".jpe", ".jpeg") else ext


def spool_path(url: str) -> str:
    """Unique temp file for one download: img_<uuid>.<ext>, ext guessed from the URL."""
    guessed, _ = mimetypes.guess_type(urlsplit(url).path)
    ext = extension_for(guessed) if guessed and guessed.startswith("image/") else ".jpg"
    return os.path.join(TEMP_IMG_DIR, f"img_{uuid.uuid4().hex}{ext}")


def fetch_image(url: str, timeout: float = None, session=None) -> dict:
    """
    Download one image. Never raises.

    The body is spooled to a per-call temp file (unique name) which is
    removed on every exit path, success or failure. A session opened here
    is closed before returning; a caller's session is left open.
    """
    url = (url or "").strip()
    if not url.lower().startswith(("http://", "https://")):
        return _fail("invalid_url")

    timeout = min(timeout or IMAGE_FETCH_TIMEOUT, MAX_TIMEOUT)
    own_session = session is None
    if own_session:
        session = _get_session()
    tmp_path = spool_path(url)
    try:
        os.makedirs(TEMP_IMG_DIR, exist_ok=True)
        return _download(url, tmp_path, timeout, session)
    except RemoteFetchFailed as e:
        log.warning("Image fetch failed for %s: %s", url, e)
        return _fail(str(e))
    except OSError as e:
        log.warning("Image spool failed for %s: %s", url, e)
        return _fail("io_error")
    finally:
        if own_session:
            session.close()
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Could not remove temp image %s: %s", tmp_path, e)


def fetch_image_bytes(url: str, timeout: float = None):
    """bytes on success, None on any failure."""
    result = fetch_image(url, timeout=timeout)
    return result["data"] if result["ok"] else None


# ═══════════════════════════════════════════════════════════════════════
# Per-item resolution: code → catalog URL → download
# ═══════════════════════════════════════════════════════════════════════

def resolve_item_image(code: str, lookup_url, fetch=fetch_image) -> dict:
    """Image result for one product code. Never raises."""
    if not code:
        return _fail("no_code")
    try:
        url = lookup_url(code)
    except StoreUnavailable as e:
        log.warning("Catalog unavailable for image of %s: %s", code, e)
        return _fail("catalog_unavailable")
    if not url:
        return _fail("no_url")
    try:
        return fetch(url)
    except Exception as e:
        # Fetchers are expected not to raise; a photo never aborts a quote
        log.warning("Image fetcher raised for %s: %s", code, e, exc_info=True)
        return _fail("fetch_error")


def resolve_item_images(codes, lookup_url, fetch=fetch_image,
                        max_workers: int = None) -> list:
    """
    Resolve photos for a list of product codes concurrently.

    Results are returned positionally (results[i] belongs to codes[i]),
    never in completion order. Repeated codes are fetched once.
    """
    codes = list(codes)
    unique = list(dict.fromkeys(c for c in codes if c))
    if not unique:
        return [_fail("no_code") for _ in codes]

    workers = max(1, min(max_workers or IMAGE_FETCH_WORKERS, len(unique)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        fetched = list(pool.map(lambda c: resolve_item_image(c, lookup_url, fetch), unique))
    by_code = dict(zip(unique, fetched))

    ok = sum(1 for r in fetched if r["ok"])
    log.info("Item images: %d/%d codes resolved", ok, len(unique))
    return [by_code[c] if c else _fail("no_code") for c in codes]
