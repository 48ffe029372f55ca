"""
Telegram HTML rendering of model answers.

Streaming renders only escape the text (partial markdown would flicker);
final renders convert markdown with placeholder protection for code.
Thinking is shown as a blockquote, expandable once the answer is final.
"""

import html as html_module
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r'<(/?)(\w+)[^>]*>')


def escape_html(text: str) -> str:
    """Escape only <, >, & (quotes display as &quot; in Telegram)"""
    return html_module.escape(text, quote=False)


def markdown_to_html(text: str) -> str:
    """
    Convert Markdown to Telegram HTML.

    Supports:
    - **bold** → <b>bold</b>
    - *italic* → <i>italic</i>
    - `code` → <code>code</code>
    - ```code block``` → <pre>code block</pre>
    - __underline__ → <u>underline</u>
    - ~~strike~~ → <s>strike</s>

    Text without markdown comes back escaped and otherwise unchanged.
    """
    if not text:
        return text

    try:
        return _markdown_to_html_impl(text)
    except Exception as e:
        logger.warning(f"markdown_to_html failed, using fallback: {e}")
        return escape_html(text)


def _markdown_to_html_impl(text: str) -> str:
    placeholders = []

    def get_placeholder(index: int) -> str:
        # Private Use Area character, never present in model output
        return chr(0xE000 + index)

    def protect_code_block(m: re.Match) -> str:
        key = get_placeholder(len(placeholders))
        lang = m.group(1) or ''
        lang_class = f' class="language-{lang}"' if lang else ''
        placeholders.append(f'<pre><code{lang_class}>{escape_html(m.group(2))}</code></pre>')
        return key

    text = re.sub(
        r"```([a-zA-Z][a-zA-Z0-9_+-]*)?\n?([\s\S]*?)```",
        protect_code_block,
        text
    )

    def protect_inline_code(m: re.Match) -> str:
        key = get_placeholder(len(placeholders))
        placeholders.append(f'<code>{escape_html(m.group(1))}</code>')
        return key

    text = re.sub(r'`([^`\n]+)`', protect_inline_code, text)

    text = escape_html(text)

    text = re.sub(r'\*\*([^*\n]+)\*\*', r'<b>\1</b>', text)
    text = re.sub(r'__([^_\n]+)__', r'<u>\1</u>', text)
    text = re.sub(r'~~([^~\n]+)~~', r'<s>\1</s>', text)
    text = re.sub(r'(?<![*\w])\*([^*\s][^*\n]*?)\*(?![*\w])', r'<i>\1</i>', text)

    for i, content in enumerate(placeholders):
        text = text.replace(get_placeholder(i), content, 1)

    return text


def format_thinking(thinking: str, collapsed: bool = True) -> str:
    if not thinking:
        return ""
    tag = "<blockquote expandable>" if collapsed else "<blockquote>"
    return f"{tag}{escape_html(thinking)}</blockquote>"


def _join(thinking_html: str, text_html: str) -> str:
    if thinking_html and text_html:
        return f"{thinking_html}\n{text_html}"
    return thinking_html or text_html


def format_stream_display(text: str, thinking: Optional[str] = None) -> str:
    """Render of a live (non-final) message"""
    return _join(format_thinking(thinking or "", collapsed=False), escape_html(text))


def format_response(text: str, thinking: Optional[str] = None) -> str:
    """Render of a finished message"""
    return _join(format_thinking(thinking or ""), markdown_to_html(text))


def format_response_safe(text: str, thinking: Optional[str] = None) -> str:
    """Render without markdown conversion, used when Telegram rejects the markup"""
    return _join(format_thinking(thinking or ""), escape_html(text))


def balance_html(text: str) -> str:
    """
    Make a slice of rendered HTML valid on its own.

    Drops a cut-off tag at the end and closing tags without an opener,
    then closes whatever is still open. Used on split parts of a render.
    """
    last_open = text.rfind('<')
    last_close = text.rfind('>')
    if last_open > last_close:
        text = text[:last_open]

    stack = []
    pieces = []
    position = 0
    for match in _TAG_RE.finditer(text):
        pieces.append(text[position:match.start()])
        position = match.end()
        is_closing, tag_name = match.group(1), match.group(2).lower()
        if not is_closing:
            stack.append(tag_name)
        elif stack and stack[-1] == tag_name:
            stack.pop()
        else:
            continue
        pieces.append(match.group(0))
    pieces.append(text[position:])

    closing_tags = "".join(f"</{tag}>" for tag in reversed(stack))
    return "".join(pieces) + closing_tags
