"""Minimal markdown-to-HTML renderer for assistant replies.

Only a small, deliberate subset is supported: fenced code blocks, bold,
italic, inline code and line breaks. Non-code text is HTML-escaped before
any markup is introduced, and code bodies are escaped on their own when the
blocks are put back, so nothing from the model is ever interpreted as HTML.
"""

from __future__ import annotations

import html
import re
import uuid
from dataclasses import dataclass

from ae_chat.core.types import CodeKind

# The closing fence must sit alone on its own line.
FENCE_PATTERN = re.compile(
    r"(```|~~~)([^\r\n]*)\r?\n(.*?)^\1[ \t]*\r?(?:\n|\Z)", re.DOTALL | re.MULTILINE
)
INLINE_CODE_PATTERN = re.compile(r"`([^`\r\n]+?)`")
BOLD_PATTERN = re.compile(r"\*\*(.+?)\*\*")
ITALIC_PATTERN = re.compile(r"\*(.+?)\*")
NEWLINE_PATTERN = re.compile(r"\r?\n")

SENTRY = "␞"  # record separator symbol

_EXPRESSION_HINTS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"value(\s*[+\-*/]|\s*\.\w+)",
        r"wiggle\s*\(",
        r"ease\s*\(",
        r"linear\s*\(",
        r"sine\s*\(",
        r"time(\s*[+\-*/]|\s*\.\w+)",
        r"index(\s*[+\-*/]|\s*\.\w+)",
        r"transform\.",
        r"thisComp\.",
        r"thisLayer\.",
    )
]
_SCRIPT_HINTS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"app\.",
        r"project\.",
        r"function\s+\w+\s*\(",
        r"var\s+\w+",
        r"for\s*\(",
        r"beginUndoGroup",
        r"endUndoGroup",
    )
]
_PANEL_HINTS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<html",
        r"<body",
        r"<div.*class",
        r"manifest\.xml",
        r"ExtensionManifest",
        r"window\.__adobe_cep__",
        r"evalScript",
        r"\.panel-",
        r"<!DOCTYPE html>",
    )
]
_EXPRESSION_MAX_LINES = 20


@dataclass(frozen=True, slots=True)
class CodeBlock:
    language: str
    code: str

    @property
    def kind(self) -> CodeKind:
        return classify_code(self.code)


def classify_code(code: str) -> CodeKind:
    """Guess what a code block is for: an AE expression, an ExtendScript, panel code, or neither."""
    if any(p.search(code) for p in _PANEL_HINTS) or (
        "function" in code and "window" in code and "CEP" in code
    ):
        return CodeKind.PANEL
    if (
        any(p.search(code) for p in _EXPRESSION_HINTS)
        and "app." not in code
        and "var " not in code
        and "function " not in code
        and len(code.split("\n")) < _EXPRESSION_MAX_LINES
    ):
        return CodeKind.EXPRESSION
    if any(p.search(code) for p in _SCRIPT_HINTS):
        return CodeKind.SCRIPT
    return CodeKind.PLAIN


def _strip_final_newline(body: str) -> str:
    return body.removesuffix("\n").removesuffix("\r")


def extract_code_blocks(text: str) -> list[CodeBlock]:
    """All fenced blocks in *text*, in order."""
    if not text or not isinstance(text, str):
        return []
    return [
        CodeBlock(language=m.group(2).strip().lower(), code=_strip_final_newline(m.group(3)))
        for m in FENCE_PATTERN.finditer(text)
    ]


def _language_class(language: str) -> str:
    return re.sub(r"[^a-z0-9_+#.-]", "", language)


def render_code_block(block: CodeBlock, block_id: str) -> str:
    """Fixed HTML template for one fenced block with its action buttons."""
    kind = block.kind
    safe_code = html.escape(block.code)
    label = html.escape(block.language or "code")
    lang_class = _language_class(block.language)
    code_class = f' class="language-{lang_class}"' if lang_class else ""

    buttons = [
        '<button class="code-btn copy" data-action="copy">Copy</button>',
        '<button class="code-btn save" data-action="save">Save</button>',
    ]
    if kind in (CodeKind.EXPRESSION, CodeKind.SCRIPT):
        buttons.append('<button class="code-btn apply" data-action="apply">Apply</button>')
    if kind is CodeKind.SCRIPT:
        buttons.append('<button class="code-btn run" data-action="run">Run</button>')
    elif kind is CodeKind.PANEL:
        buttons.append('<button class="code-btn package" data-action="package">Package</button>')

    return (
        f'<div class="code-block-container" id="{block_id}" data-kind="{kind.value}">'
        '<div class="code-toolbar">'
        f'<span class="code-lang">{label}</span>'
        f'<div class="code-actions">{"".join(buttons)}</div>'
        "</div>"
        f'<pre class="code-block"><code{code_class}>{safe_code}</code></pre>'
        '<div class="code-feedback" aria-live="polite"></div>'
        "</div>"
    )


def render_markdown(text: str) -> str:
    """Convert an assistant reply to safe HTML."""
    if not text or not isinstance(text, str):
        return ""

    nonce = uuid.uuid4().hex
    blocks: list[CodeBlock] = []

    def _stash_block(match: re.Match) -> str:
        blocks.append(
            CodeBlock(language=match.group(2).strip().lower(), code=_strip_final_newline(match.group(3)))
        )
        return f"{SENTRY}{nonce}b{len(blocks) - 1}{SENTRY}"

    stripped = FENCE_PATTERN.sub(_stash_block, text)

    # Escape once; everything after this point only adds markup we control.
    escaped = html.escape(stripped)

    spans: list[str] = []

    def _stash_span(match: re.Match) -> str:
        spans.append(match.group(1))
        return f"{SENTRY}{nonce}s{len(spans) - 1}{SENTRY}"

    body = INLINE_CODE_PATTERN.sub(_stash_span, escaped)
    body = BOLD_PATTERN.sub(r"<strong>\1</strong>", body)
    body = ITALIC_PATTERN.sub(r"<em>\1</em>", body)
    body = NEWLINE_PATTERN.sub("<br>", body)

    placeholder = re.compile(re.escape(SENTRY + nonce) + r"([bs])(\d+)" + re.escape(SENTRY))

    def _restore(match: re.Match) -> str:
        index = int(match.group(2))
        if match.group(1) == "s":
            return f"<code>{spans[index]}</code>"
        return render_code_block(blocks[index], f"code-{nonce[:8]}-{index}")

    return placeholder.sub(_restore, body)
