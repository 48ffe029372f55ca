"""Citation block appended below answers that used web search"""

import html as html_module
import re
from typing import List, Optional, Sequence
from urllib.parse import quote_plus

from domain.value_objects.grounding import GroundingData
from presentation.handlers.streaming.formatting import escape_html

_ANCHOR_RE = re.compile(r'<a[^>]*\bhref=["\']([^"\']+)["\'][^>]*>([\s\S]*?)</a>')


def _strip_tags(content: str) -> str:
    return re.sub(r'\s+', ' ', re.sub(r'<[^>]*>', '', content)).strip()


def _extract_anchors(rendered: Optional[str]) -> List[tuple[str, str]]:
    if not rendered:
        return []
    return [(href, _strip_tags(text)) for href, text in _ANCHOR_RE.findall(rendered)]


def _match_anchors(queries: Sequence[str], anchors: List[tuple[str, str]]) -> List[Optional[str]]:
    """Pair each query with a search link: by anchor text, then by href, then the next unused one"""
    used = set()
    matched = []
    for query in queries:
        norm = query.strip().lower()
        found = None
        for i, (href, text) in enumerate(anchors):
            if i not in used and text and (norm in text.lower() or text.lower() in norm):
                found = i
                break
        if found is None:
            for i, (href, _) in enumerate(anchors):
                lowered = href.lower()
                if i not in used and (norm in lowered or quote_plus(norm) in lowered):
                    found = i
                    break
        if found is None:
            found = next((i for i in range(len(anchors)) if i not in used), None)
        if found is None:
            matched.append(None)
        else:
            used.add(found)
            matched.append(anchors[found][0])
    return matched


def _link(href: str, label: str) -> str:
    return f'<a href="{html_module.escape(href, quote=True)}">{escape_html(label)}</a>'


def format_grounding(grounding: GroundingData, safe: bool = False) -> str:
    """
    Render one grounding entry.

    ``safe`` renders plain escaped text without links.
    """
    queries = [q for q in grounding.search_queries if q and q.strip()]
    if not queries and not grounding.sources:
        return ""

    lines = []
    if queries:
        links = [None] * len(queries) if safe else _match_anchors(
            queries, _extract_anchors(grounding.rendered_content)
        )
        lines.append(" | ".join(
            _link(href, q) if href else escape_html(q) for q, href in zip(queries, links)
        ))
    for idx, source in enumerate(grounding.sources, start=1):
        title = source.title or "no title"
        if safe:
            lines.append(f"[{idx}] {escape_html(title)}")
        else:
            lines.append(f"[{idx}] {_link(source.uri, title)}")

    body = "\n".join(lines)
    return f"\n<b>GoogleSearch</b>\n<blockquote expandable>{body}</blockquote>"


def append_grounding(message: str, grounding: Sequence[GroundingData], safe: bool = False) -> str:
    if not message or not grounding:
        return message
    return message + "".join(format_grounding(g, safe=safe) for g in grounding)
