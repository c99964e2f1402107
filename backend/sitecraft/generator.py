"""
Text model collaborator: prompt assembly + streamed Anthropic completion.

The model is asked for a JSON plan; parsing happens in plan_parser, so this
module only returns the concatenated text.
"""

import os
from typing import Iterable, Protocol

import anthropic

from sitecraft.config import get_settings
from sitecraft.errors import GenerationError
from sitecraft.models import PageAnalysis


class TextModel(Protocol):
    async def complete(self, messages: str | list[dict], system: str | None = None) -> str: ...


PLAN_SYSTEM_PROMPT = """You are an expert assistant for building Next.js (App Router) sites.
Before generating files, decide whether the request implies cloning a real site or pulling in its content.
If so, include "actions" with "requestAnalysis" and/or "writeAnalyzed" instead of guessing the markup yourself.

Respect EXACTLY the file path the user asks for. If they ask for "app/about/page.tsx", write "app/about/page.tsx".

Expected JSON schema:
{
  "files": { "<relative path>": "<full file content>" },
  "delete": ["<relative path>"],
  "dependencies": { "package": "version" },
  "devDependencies": { "package": "version" },
  "commands": ["npm install ..."],
  "actions": [
    { "type": "requestAnalysis", "url": "https://example.com", "target": "page" },
    { "type": "writeAnalyzed", "path": "<path requested by the user>", "fromAnalysisOf": "https://example.com" }
  ]
}

Rules:
- Never import globals.css from components; app/layout.tsx loads it.
- Do not emit package.json; declare packages in "dependencies"/"devDependencies".
- Keep each file under 50KB.

Respond ONLY with valid JSON and nothing else."""


def _truncate(text: str, limit: int, marker: str) -> str:
    return text[:limit] + marker if len(text) > limit else text


def build_design_context(analysis: PageAnalysis | None, max_css_chars: int = 4000,
                         max_html_chars: int = 2000) -> str | None:
    """Summarize a cached analysis so later turns keep the same look."""
    if analysis is None:
        return None
    css = _truncate(analysis.full_css or "", max_css_chars, "\n/*...truncated...*/")
    html = _truncate(analysis.full_html or "", max_html_chars, "...truncated...")
    return (
        "DESIGN_CONTEXT:\n"
        "Reuse the same classes, colors, backgrounds and layout to keep visual "
        "continuity across every generated page.\n\n"
        f"CSS:\n{css}\n\n"
        f"HTML snippet:\n{html}"
    )


def build_messages(user_message: str, design: PageAnalysis | None = None,
                   history: Iterable[dict] = ()) -> list[dict]:
    """
    Anthropic message list: prior turns, then one user turn holding the
    design context (if any) followed by the request.
    """
    messages = [{"role": m["role"], "content": m["content"]} for m in history]
    parts = []
    context = build_design_context(design)
    if context:
        parts.append(context)
    parts.append(user_message)
    messages.append({"role": "user", "content": "\n\n".join(parts)})
    return messages


class AnthropicTextModel:
    def __init__(self, api_key: str | None = None, model: str | None = None,
                 max_tokens: int | None = None, client=None):
        settings = get_settings()
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY") or settings.anthropic_api_key
        self.model = model or settings.default_model
        self.max_tokens = max_tokens or settings.max_output_tokens
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise GenerationError("ANTHROPIC_API_KEY not set")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, messages: str | list[dict], system: str | None = None) -> str:
        """Stream a completion and return the concatenated text."""
        if isinstance(messages, str):
            messages = [{"role": "user", "content": messages}]
        if not messages:
            raise GenerationError("Prompt is empty")

        client = self._get_client()
        kwargs = {"model": self.model, "max_tokens": self.max_tokens, "messages": messages}
        if system:
            kwargs["system"] = system

        text = ""
        try:
            async with client.messages.stream(**kwargs) as stream:
                async for chunk in stream.text_stream:
                    text += chunk
        except anthropic.APIError as e:
            raise GenerationError(f"Model request failed: {e}") from e

        print(f"  [generate] {len(text)} chars from {self.model}")
        return text
