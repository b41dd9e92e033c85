from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

log = logging.getLogger("scrape")

_RESOURCE_TAGS = ["script", "frame", "iframe"]


def resource_urls(page_url: str, html: str) -> List[str]:
    """Absolute script/frame/iframe sources referenced by a page, in order."""
    soup = BeautifulSoup(html, "html.parser")
    seen = set()
    out: List[str] = []
    for tag in soup.find_all(_RESOURCE_TAGS, src=True):
        src = tag["src"].strip()
        if not src:
            continue
        url = urljoin(page_url, src)
        if url.startswith(("http://", "https://")) and url not in seen:
            seen.add(url)
            out.append(url)
    return out


def url_to_dir(url: str) -> str:
    """Filesystem-safe name for a site url (https://a.io/mint -> a_iomint)."""
    return re.sub(r"[^\w-]|https|http", "", url.replace(".", "_"))


async def fetch_site_texts(
    url: str,
    timeout_s: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> List[str]:
    """
    Downloads a mint site page and the scripts/frames it references.
    Returns the page text followed by every resource that could be fetched.
    """
    own_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)
    try:
        resp = await client.get(url)
        resp.raise_for_status()
        texts = [resp.text]
        for src in resource_urls(str(resp.url), resp.text):
            try:
                r = await client.get(src)
                r.raise_for_status()
            except httpx.HTTPError as e:
                log.warning("Skipping resource %s: %s", src, e)
                continue
            texts.append(r.text)
        log.info("Fetched %d resources from %s", len(texts), url)
        return texts
    finally:
        if own_client:
            await client.aclose()
