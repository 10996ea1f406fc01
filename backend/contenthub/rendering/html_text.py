from __future__ import annotations

import html
import re
from typing import Dict, List, Mapping


_SCRIPT_STYLE_RE = re.compile(r"<(script|style|noscript)\b[^>]*>.*?</\1\s*>", flags=re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", flags=re.DOTALL)
_BLOCK_TAG_RE = re.compile(r"</?(p|div|h[1-6]|li|ul|ol|br|section|article|header|footer|tr|td|blockquote)\b[^>]*>", flags=re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACES_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")

IMG_TAG_RE = re.compile(r"<img\b[^>]*>", flags=re.IGNORECASE)
_SRC_ATTR_RE = re.compile(r"""(\ssrc\s*=\s*)(["'])([^"']*)\2""", flags=re.IGNORECASE)
_SRCSET_ATTR_RE = re.compile(r"""(\ssrcset\s*=\s*)(["'])([^"']*)\2""", flags=re.IGNORECASE)
_MEDIA_TAG_RE = re.compile(r"<(img|source)\b[^>]*>", flags=re.IGNORECASE)
_LOADING_ATTR_RE = re.compile(r"\sloading\s*=", flags=re.IGNORECASE)


def extract_readable_text(markup: str) -> str:
    """
    Visible text of a page, one block per line.

    Scripts, styles and comments are dropped, entities are decoded. Used to
    feed the quality analysis, which compares prose rather than markup.
    """
    text = _COMMENT_RE.sub("", markup or "")
    text = _SCRIPT_STYLE_RE.sub("", text)
    text = _BLOCK_TAG_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    text = _SPACES_RE.sub(" ", text)
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n", "\n".join(line for line in lines if line)).strip()


def image_sources(markup: str) -> List[str]:
    """`src` of every <img>, in document order (the order positional hints count in)."""
    out: List[str] = []
    for tag in IMG_TAG_RE.finditer(markup or ""):
        m = _SRC_ATTR_RE.search(tag.group(0))
        if m:
            out.append(m.group(3))
    return out


def _map_srcset(srcset: str, url_map: Mapping[str, str]) -> str:
    entries = []
    for entry in srcset.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        if parts[0] in url_map:
            parts[0] = url_map[parts[0]]
        entries.append(" ".join(parts))
    return ", ".join(entries)


def replace_image_urls(markup: str, url_map: Dict[str, str], lazy: bool = True) -> str:
    """
    Rewrite <img>/<source> `src` and `srcset` entries found in `url_map`.

    URLs missing from the map keep their original value. With `lazy`, images
    without a `loading` attribute get `loading="lazy"`.
    """

    def _rewrite_tag(m: re.Match) -> str:
        tag = m.group(0)
        tag = _SRC_ATTR_RE.sub(
            lambda a: f"{a.group(1)}{a.group(2)}{url_map.get(a.group(3), a.group(3))}{a.group(2)}",
            tag,
        )
        tag = _SRCSET_ATTR_RE.sub(
            lambda a: f"{a.group(1)}{a.group(2)}{_map_srcset(a.group(3), url_map)}{a.group(2)}",
            tag,
        )
        if lazy and m.group(1).lower() == "img" and not _LOADING_ATTR_RE.search(tag):
            closing = "/>" if tag.endswith("/>") else ">"
            tag = tag[: -len(closing)].rstrip() + ' loading="lazy"' + (" " if closing == "/>" else "") + closing
        return tag

    return _MEDIA_TAG_RE.sub(_rewrite_tag, markup or "")
