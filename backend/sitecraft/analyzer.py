"""
Site analyzer: fetch a page and collect its markup, styles and scripts.

Plain HTTP + HTML parsing (no browser): the root document is fetched, every
linked stylesheet and script is fetched concurrently, and the results are
concatenated in document order. Sub-resource failures are dropped; only a
root-page failure is an error.
"""

import asyncio
import re
from typing import Protocol
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from sitecraft.config import get_settings
from sitecraft.errors import FetchError
from sitecraft.models import AnimationFile, PageAnalysis


class Analyzer(Protocol):
    async def analyze(self, url: str) -> PageAnalysis: ...


# Ordered: first match wins
ANIMATION_PATTERNS = [
    (re.compile(r"gsap|tweenmax|tweenlite|timelinemax|timelinelite", re.I), "GSAP", 90),
    (re.compile(r"new THREE\.|THREE\.Scene|THREE\.WebGLRenderer", re.I), "Three.js", 95),
    (re.compile(r"anime\(|anime\.js", re.I), "Anime.js", 85),
    (re.compile(r"lottie|bodymovin", re.I), "Lottie", 90),
    (re.compile(r"framer-motion|motion\.", re.I), "Framer Motion", 85),
    (re.compile(r"aos\.init|AOS\.", re.I), "AOS", 80),
    (re.compile(r"scrollmagic", re.I), "ScrollMagic", 80),
    (re.compile(r"@keyframes|animation:|transform:|transition:", re.I), "CSS Animations", 70),
]

CDN_MARKERS = ("cdn", "googleapis")


def normalize_url(url: str) -> str:
    url = (url or "").strip()
    if not re.match(r"^https?://", url, re.I):
        url = "https://" + url
    return url


def detect_animation_library(content: str) -> tuple[str, int] | None:
    """Return (library, confidence) for the first matching pattern, if any."""
    for regex, library, confidence in ANIMATION_PATTERNS:
        if regex.search(content):
            return library, confidence
    return None


def _resolve_all(urls: list[str], base: str) -> list[str]:
    resolved = []
    for u in urls:
        if not u:
            continue
        try:
            resolved.append(urljoin(base, u.strip()))
        except ValueError:
            continue
    return resolved


def _is_cdn(url: str) -> bool:
    return any(marker in url for marker in CDN_MARKERS)


class SiteAnalyzer:
    """httpx + BeautifulSoup implementation of the Analyzer contract."""

    def __init__(self, timeout: float | None = None, user_agent: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.headers = {
            "User-Agent": user_agent or settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=True,
            transport=self.transport,
        )

    async def _fetch_optional(self, client: httpx.AsyncClient, url: str) -> str | None:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.text
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            print(f"  [analyze] Skipping {url}: {e}")
            return None

    async def analyze(self, url: str) -> PageAnalysis:
        url = normalize_url(url)
        parsed = urlparse(url)
        if not parsed.netloc:
            raise FetchError(url, "URL has no host")
        base_url = f"{parsed.scheme}://{parsed.netloc}"

        print(f"  [analyze] Starting analysis of {url}")

        async with self._client() as client:
            try:
                resp = await client.get(url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise FetchError(url, str(e)) from e
            if resp.status_code >= 400:
                raise FetchError(url, f"HTTP {resp.status_code}")

            soup = BeautifulSoup(resp.text, "html.parser")
            page_url = str(resp.url)

            css_sources = _resolve_all(
                [link.get("href") for link in soup.select('link[rel="stylesheet"]')], page_url
            )
            script_sources = _resolve_all(
                [s.get("src") for s in soup.select("script[src]")], page_url
            )
            print(f"  [analyze] {len(css_sources)} stylesheets, {len(script_sources)} scripts")

            css_contents, js_contents = await asyncio.gather(
                asyncio.gather(*(self._fetch_optional(client, u) for u in css_sources)),
                asyncio.gather(*(self._fetch_optional(client, u) for u in script_sources)),
            )

        title = soup.title.get_text().strip() if soup.title and soup.title.get_text().strip() else "Untitled"
        meta = soup.find("meta", attrs={"name": "description"})
        description = (meta.get("content") or "") if meta else ""

        inline_css = [s.string for s in soup.find_all("style") if s.string]
        inline_js = [
            s.string for s in soup.find_all("script")
            if not s.has_attr("src") and s.string
        ]

        css_parts = [
            f"/* From: {href} */\n{content}"
            for href, content in zip(css_sources, css_contents) if content is not None
        ]
        css_parts += [f"/* Inline style {i + 1} */\n{css}" for i, css in enumerate(inline_css)]
        full_css = "\n\n".join(css_parts)

        js_parts = [
            f"/* From: {src} */\n{content}"
            for src, content in zip(script_sources, js_contents) if content is not None
        ]
        js_parts += [f"/* Inline script {i + 1} */\n{js}" for i, js in enumerate(inline_js)]
        full_js = "\n\n".join(js_parts)

        animation_files = []
        for src, content in zip(script_sources, js_contents):
            if content is None:
                continue
            detected = detect_animation_library(content)
            if detected:
                animation_files.append(AnimationFile(
                    url=src, content=content, library=detected[0], confidence=detected[1],
                ))

        used_classes = set()
        for el in soup.find_all(class_=True):
            classes = el.get("class") or []
            if isinstance(classes, str):
                classes = classes.split()
            used_classes.update(c.strip() for c in classes if c.strip())

        tech_guesses = [f.library for f in animation_files if f.library]
        if "tailwind" in full_css:
            tech_guesses.append("Tailwind CSS")
        if "react" in full_js:
            tech_guesses.append("React")
        if "vue" in full_js:
            tech_guesses.append("Vue.js")

        hrefs = [a.get("href") or "" for a in soup.find_all("a")]
        body = soup.body
        full_html = body.decode_contents() if body else str(soup)

        print(f"  [analyze] Done: {len(full_css)} chars CSS, {len(full_js)} chars JS, "
              f"{len(animation_files)} animation files")

        return PageAnalysis(
            base_url=base_url,
            title=title,
            description=description,
            full_html=full_html,
            full_css=full_css,
            full_js=full_js,
            used_classes=sorted(used_classes),
            animation_files=animation_files,
            required_cdn_urls=[u for u in css_sources + script_sources if _is_cdn(u)],
            tech_guesses=tech_guesses,
            stylesheets=len(css_sources),
            internal_links=sum(1 for h in hrefs if h.startswith(("/", "./", "../"))),
            external_links=sum(1 for h in hrefs if h.startswith("http")),
            images=_resolve_all([img.get("src") for img in soup.find_all("img")], page_url),
            open_graph_tags=len(soup.find_all("meta", attrs={"property": re.compile(r"^og:")})),
        )
