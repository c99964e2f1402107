"""
Project scaffold: the baseline Next.js files every sandbox starts from,
plus builders that turn a PageAnalysis into page/stylesheet files.

Pure string building, no I/O.
"""

import json
import time

from sitecraft.models import PageAnalysis


# ── Baseline manifest ────────────────────────────────────────────────────────

DEFAULT_PORT = 3000

BASELINE_MANIFEST = {
    "name": "nextjs-app",
    "private": True,
    "scripts": {
        "dev": "next dev -p 3000 -H 0.0.0.0",
        "build": "next build",
        "start": "next start -p 3000 -H 0.0.0.0",
    },
    "dependencies": {
        "next": "14.2.3",
        "react": "18.2.0",
        "react-dom": "18.2.0",
    },
}

MANIFEST_PATH = "package.json"
LAYOUT_PATH = "app/layout.tsx"
PAGE_PATH = "app/page.tsx"
GLOBALS_CSS_PATH = "app/globals.css"
TAILWIND_CONFIG_PATH = "tailwind.config.js"
POSTCSS_CONFIG_PATH = "postcss.config.js"
DESIGN_SUMMARY_PATH = "design.json"

# Utility-styling toolchain added whenever an analysis is pulled into a plan
STYLING_DEV_DEPENDENCIES = {
    "tailwindcss": "^3.4.0",
    "autoprefixer": "^10.4.0",
    "postcss": "^8.4.0",
}


def _manifest_for_port(port: int) -> dict:
    manifest = json.loads(json.dumps(BASELINE_MANIFEST))
    manifest["scripts"]["dev"] = f"next dev -p {port} -H 0.0.0.0"
    manifest["scripts"]["start"] = f"next start -p {port} -H 0.0.0.0"
    return manifest


def baseline_manifest_text(port: int = DEFAULT_PORT) -> str:
    return json.dumps(_manifest_for_port(port), indent=2)


def build_manifest(dependencies: dict | None = None, dev_dependencies: dict | None = None,
                   port: int = DEFAULT_PORT) -> str:
    """
    Merge plan dependencies into the baseline manifest.
    Plan entries are additive (a plan may pin a different version of a
    baseline package, but baseline packages are never removed).
    """
    manifest = _manifest_for_port(port)
    manifest["dependencies"].update(dependencies or {})
    if dev_dependencies:
        manifest["devDependencies"] = dict(dev_dependencies)
    return json.dumps(manifest, indent=2)


# ── Template files ───────────────────────────────────────────────────────────

DEFAULT_LAYOUT = '''import "./globals.css";

export default function RootLayout({ children }: { children: React.ReactNode }) {
  return (
    <html lang="en">
      <body>{children}</body>
    </html>
  );
}
'''

DEFAULT_PAGE = '''"use client";
export default function Page() {
  return <h1>Hello from Next.js</h1>;
}
'''

DEFAULT_GLOBALS_CSS = '''@tailwind base;
@tailwind components;
@tailwind utilities;
'''

TAILWIND_CONFIG = '''/** @type {import('tailwindcss').Config} */
module.exports = {
  content: [
    './pages/**/*.{js,ts,jsx,tsx,mdx}',
    './components/**/*.{js,ts,jsx,tsx,mdx}',
    './app/**/*.{js,ts,jsx,tsx,mdx}',
  ],
  theme: {
    extend: {},
  },
  plugins: [],
}
'''

POSTCSS_CONFIG = '''module.exports = {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
'''

FALLBACK_CSS = '''/* Base styles */
@import url('https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600;700&display=swap');

* {
  box-sizing: border-box;
}

body {
  font-family: 'Inter', sans-serif;
  margin: 0;
  padding: 0;
}'''

# Layout, globals and a placeholder page so an empty plan still builds
SCAFFOLD_FILES = {
    LAYOUT_PATH: DEFAULT_LAYOUT,
    PAGE_PATH: DEFAULT_PAGE,
    GLOBALS_CSS_PATH: DEFAULT_GLOBALS_CSS,
}


# ── Builders ─────────────────────────────────────────────────────────────────

def escape_template_literal(s: str) -> str:
    """Escape text for embedding inside a JS `template literal`."""
    return s.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def build_page_from_analysis(analysis: PageAnalysis) -> str:
    """
    Page component that renders the analyzed markup and re-injects the
    analyzed scripts on mount (removed again on unmount).
    """
    html = escape_template_literal(analysis.full_html or "")
    js = escape_template_literal(analysis.full_js or "")

    return f'''"use client";
import {{ useEffect }} from "react";

export default function Page() {{
  useEffect(() => {{
    const script = document.createElement("script");
    script.type = "text/javascript";
    script.innerHTML = `{js}`;
    document.body.appendChild(script);

    return () => {{
      try {{
        script.remove();
      }} catch (e) {{}}
    }};
  }}, []);

  return <div dangerouslySetInnerHTML={{{{ __html: `{html}` }}}} />;
}}
'''


def build_globals_css(analysis: PageAnalysis) -> str:
    """Tailwind directives followed by the analyzed CSS (or a minimal default)."""
    return DEFAULT_GLOBALS_CSS + "\n" + (analysis.full_css or FALLBACK_CSS) + "\n"


def build_design_summary(analysis: PageAnalysis) -> str:
    return json.dumps(
        {
            "baseURL": analysis.base_url,
            "title": analysis.title,
            "description": analysis.description,
            "timestamp": int(time.time() * 1000),
        },
        indent=2,
    )
