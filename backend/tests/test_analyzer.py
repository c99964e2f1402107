import httpx
import pytest

from sitecraft.analyzer import SiteAnalyzer, detect_animation_library, normalize_url
from sitecraft.errors import FetchError


PAGE = """<!doctype html>
<html>
<head>
  <title> Demo Site </title>
  <meta name="description" content="A demo">
  <meta property="og:title" content="Demo">
  <meta property="og:image" content="/og.png">
  <link rel="stylesheet" href="/main.css">
  <link rel="stylesheet" href="https://fonts.googleapis.com/css?family=Inter">
  <link rel="stylesheet" href="/missing.css">
  <style>.inline{margin:0}</style>
  <script src="/app.js"></script>
  <script src="https://cdn.example.net/gsap.min.js"></script>
</head>
<body>
  <div class="hero big"><p class="lead">Hello</p></div>
  <a href="/about">About</a>
  <a href="https://elsewhere.example">Out</a>
  <img src="/logo.png">
  <script>window.ready = true;</script>
</body>
</html>
"""


def _transport(routes: dict[str, httpx.Response]):
    def handler(request: httpx.Request) -> httpx.Response:
        response = routes.get(str(request.url))
        if response is None:
            return httpx.Response(404, text="not found")
        return response
    return httpx.MockTransport(handler)


@pytest.fixture
def site():
    return {
        "https://demo.test/": httpx.Response(200, text=PAGE),
        "https://demo.test/main.css": httpx.Response(200, text="body{color:red}"),
        "https://fonts.googleapis.com/css?family=Inter": httpx.Response(200, text="@font-face{}"),
        "https://demo.test/app.js": httpx.Response(200, text="console.log('app')"),
        "https://cdn.example.net/gsap.min.js": httpx.Response(200, text="gsap.to('.hero', {x: 10})"),
    }


async def test_analyze_collects_page_resources(site):
    analyzer = SiteAnalyzer(timeout=5, transport=_transport(site))

    analysis = await analyzer.analyze("https://demo.test/")

    assert analysis.base_url == "https://demo.test"
    assert analysis.title == "Demo Site"
    assert analysis.description == "A demo"
    assert "/* From: https://demo.test/main.css */\nbody{color:red}" in analysis.full_css
    assert "/* Inline style 1 */\n.inline{margin:0}" in analysis.full_css
    assert "missing.css" not in analysis.full_css
    assert "console.log('app')" in analysis.full_js
    assert "/* Inline script 1 */\nwindow.ready = true;" in analysis.full_js
    assert analysis.full_css.index("main.css") < analysis.full_css.index("Inline style")
    assert '<p class="lead">Hello</p>' in analysis.full_html
    assert analysis.used_classes == ["big", "hero", "lead"]
    assert analysis.stylesheets == 3
    assert analysis.internal_links == 1
    assert analysis.external_links == 1
    assert analysis.images == ["https://demo.test/logo.png"]
    assert analysis.open_graph_tags == 2
    assert "https://fonts.googleapis.com/css?family=Inter" in analysis.required_cdn_urls
    assert "https://cdn.example.net/gsap.min.js" in analysis.required_cdn_urls


async def test_animation_library_detected(site):
    analysis = await SiteAnalyzer(transport=_transport(site)).analyze("https://demo.test/")

    [gsap] = analysis.animation_files
    assert gsap.url == "https://cdn.example.net/gsap.min.js"
    assert gsap.library == "GSAP"
    assert gsap.confidence == 90
    assert "GSAP" in analysis.tech_guesses


async def test_scheme_is_added():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text="<html><body>hi</body></html>")

    analysis = await SiteAnalyzer(transport=httpx.MockTransport(handler)).analyze("demo.test")
    assert seen[0].startswith("https://demo.test")
    assert analysis.title == "Untitled"


async def test_root_page_error_raises_fetch_error():
    analyzer = SiteAnalyzer(transport=_transport({}))
    with pytest.raises(FetchError) as exc:
        await analyzer.analyze("https://demo.test/")
    assert "404" in str(exc.value)


async def test_network_failure_raises_fetch_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError):
        await SiteAnalyzer(transport=httpx.MockTransport(handler)).analyze("https://down.test")


def test_normalize_url():
    assert normalize_url("  example.com ") == "https://example.com"
    assert normalize_url("http://example.com") == "http://example.com"


def test_detect_animation_library_first_match_wins():
    assert detect_animation_library("new THREE.Scene(); gsap.to()") == ("GSAP", 90)
    assert detect_animation_library(".a{transition: all 1s}") == ("CSS Animations", 70)
    assert detect_animation_library("plain code") is None


async def test_malformed_resource_url_is_skipped():
    page = (
        '<html><head><link rel="stylesheet" href="//cdn.test:notaport/a.css">'
        '<link rel="stylesheet" href="/ok.css"></head><body>hi</body></html>'
    )
    site = {
        "https://demo.test/": httpx.Response(200, text=page),
        "https://demo.test/ok.css": httpx.Response(200, text=".ok{}"),
    }

    analysis = await SiteAnalyzer(transport=_transport(site)).analyze("https://demo.test/")

    assert ".ok{}" in analysis.full_css
    assert "notaport" not in analysis.full_css


async def test_malformed_root_url_raises_fetch_error():
    with pytest.raises(FetchError):
        await SiteAnalyzer(transport=_transport({})).analyze("https://demo.test:notaport/")
