"""Markdown rendering for question text shown to players.

Question bodies are authored as Markdown (LaTeX is passed through untouched
for the client's MathJax). Raw HTML in the source is disabled so authored
content cannot inject markup into player pages.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts Markdown into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return ""
        return self._markdown.render(sanitized)


# MarkdownIt is safe to share for read-only renders across request threads.
renderer = MarkdownRenderer()
