"""
Open Graph scraping and publisher-image licensing checks.

``extract_og`` never raises: a page that cannot be fetched just yields no
metadata. ``resolve_publisher_image`` returns None when the image is not
allowed or not fetchable, but raises ImageDecodeError when the bytes it
did fetch are not a readable image.
"""

import io
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from PIL import Image
from rich.console import Console

from newscard.errors import ImageDecodeError

console = Console()

USER_AGENT = "newscard/1.0 (+https://github.com/newscard/newscard)"
MIN_IMAGE_BYTES = 1024


@dataclass
class OgMetadata:
    title: str | None = None
    image: str | None = None
    url: str | None = None


def _meta(soup: BeautifulSoup, *keys: str) -> str | None:
    for key in keys:
        tag = soup.find("meta", property=key) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def parse_og(html: str, url: str) -> OgMetadata:
    soup = BeautifulSoup(html, "html.parser")
    title = _meta(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    return OgMetadata(
        title=title,
        image=_meta(soup, "og:image", "twitter:image"),
        url=_meta(soup, "og:url") or url,
    )


def extract_og(url: str, timeout: float = 15) -> OgMetadata | None:
    try:
        resp = requests.get(url, timeout=timeout, headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml",
        })
        resp.raise_for_status()
    except requests.RequestException as e:
        console.print(f"[dim]Could not fetch OG metadata for {url}: {e}[/dim]")
        return None
    return parse_og(resp.text, url)


def _matches(host: str, domain: str) -> bool:
    domain = domain.lstrip(".").lower()
    return host == domain or host.endswith(f".{domain}")


def image_allowed(image_url: str, license_config: dict) -> bool:
    host = (urlparse(image_url).hostname or "").lower()
    allow = license_config.get("allow_domains") or []
    block = license_config.get("block_domains") or []
    if allow and not any(_matches(host, d) for d in allow):
        return False
    return not any(_matches(host, d) for d in block)


def resolve_publisher_image(
    article_url: str,
    image_url: str | None,
    license_config: dict,
    timeout: float = 15,
) -> bytes | None:
    """Download the publisher image if licensing rules allow it."""
    if not image_url:
        return None
    resolved = urljoin(article_url, image_url)
    if not image_allowed(resolved, license_config):
        console.print(f"[dim]Publisher image skipped by domain rules: {resolved}[/dim]")
        return None

    try:
        resp = requests.get(resolved, timeout=timeout, headers={
            "User-Agent": USER_AGENT,
            "Referer": article_url,
        })
        resp.raise_for_status()
    except requests.RequestException as e:
        console.print(f"[yellow]Publisher image download failed ({resolved}): {e}[/yellow]")
        return None

    content_type = resp.headers.get("content-type", "")
    if content_type and not content_type.startswith("image/"):
        console.print(f"[yellow]Not an image ({content_type}): {resolved}[/yellow]")
        return None
    if len(resp.content) < MIN_IMAGE_BYTES:
        console.print(f"[dim]Publisher image too small to use: {resolved}[/dim]")
        return None

    min_size = license_config.get("min_size") or {}
    try:
        with Image.open(io.BytesIO(resp.content)) as img:
            width, height = img.size
    except (OSError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Publisher image unreadable ({resolved}): {e}") from e

    if width < min_size.get("width", 0) or height < min_size.get("height", 0):
        console.print(f"[dim]Publisher image below minimum size ({width}x{height}): {resolved}[/dim]")
        return None
    return resp.content
