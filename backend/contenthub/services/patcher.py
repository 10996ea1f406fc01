"""
Rewriting stored markup: image reference substitution and text corrections.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Iterable, List, NamedTuple, Optional, Union
from urllib.parse import unquote

from ..rendering.html_text import IMG_TAG_RE
from ..schemas import Correction

# Shorter paths/filenames match too much of a typical page.
MIN_PATH_MATCH_LENGTH = 20
MIN_FILENAME_MATCH_LENGTH = 6

_QUERY_TAIL = r"""(?:[?#][^"']*)?"""
_IMG_SRC_RE = re.compile(r"""(\ssrc\s*=\s*["'])([^"']+)(["'])""", flags=re.IGNORECASE)


class SubstitutionResult(NamedTuple):
    html: str
    strategy: Optional[str]

    @property
    def changed(self) -> bool:
        return self.strategy is not None


def _sub_src(markup: str, url_pattern: str, new_src: str, count: int = 0) -> str:
    pattern = re.compile(rf"""(src\s*=\s*["']){url_pattern}(["'])""")
    return pattern.sub(lambda m: f"{m.group(1)}{new_src}{m.group(2)}", markup, count=count)


def _filename_of(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0].rstrip("/").rsplit("/", 1)[-1]


def _by_position(markup: str, new_src: str, image_index: int) -> str:
    seen = -1

    def _rewrite(tag_match: re.Match) -> str:
        nonlocal seen
        tag = tag_match.group(0)
        if not _IMG_SRC_RE.search(tag):
            return tag
        seen += 1
        if seen != image_index:
            return tag
        return _IMG_SRC_RE.sub(lambda m: f"{m.group(1)}{new_src}{m.group(3)}", tag, count=1)

    return IMG_TAG_RE.sub(_rewrite, markup)


def replace_image_src(
    markup: str,
    old_src: str,
    new_src: str,
    image_index: Optional[int] = None,
) -> SubstitutionResult:
    """
    Point one image reference in `markup` at `new_src`.

    Strategies run in order and the first one that changes the markup wins:
    exact match, `&amp;`-encoded, URL-decoded, path without query string,
    unique trailing filename, the `image_index`-th <img>, and finally a plain
    literal replacement anywhere in the document. When nothing matches the
    markup comes back unchanged with `strategy=None`.
    """
    if not markup or not old_src:
        return SubstitutionResult(markup, None)

    result = _sub_src(markup, re.escape(old_src), new_src)
    if result != markup:
        return SubstitutionResult(result, "exact")

    encoded = old_src.replace("&", "&amp;")
    if encoded != old_src:
        result = _sub_src(markup, re.escape(encoded), new_src)
        if result != markup:
            return SubstitutionResult(result, "entity_encoded")

    decoded = unquote(old_src)
    if decoded != old_src:
        result = _sub_src(markup, re.escape(decoded), new_src)
        if result != markup:
            return SubstitutionResult(result, "url_decoded")

    path = old_src.split("?", 1)[0].split("#", 1)[0]
    if len(path) >= MIN_PATH_MATCH_LENGTH:
        result = _sub_src(markup, re.escape(path) + _QUERY_TAIL, new_src)
        if result != markup:
            return SubstitutionResult(result, "path_only")

    filename = _filename_of(old_src)
    if len(filename) >= MIN_FILENAME_MATCH_LENGTH:
        url_pattern = r"""(?:[^"']*/)?""" + re.escape(filename) + _QUERY_TAIL
        hits = re.findall(rf"""src\s*=\s*["']{url_pattern}["']""", markup)
        # Two different images sharing a filename are ambiguous; leave them alone.
        if len(hits) == 1:
            result = _sub_src(markup, url_pattern, new_src, count=1)
            if result != markup:
                return SubstitutionResult(result, "filename")

    if image_index is not None and image_index >= 0:
        result = _by_position(markup, new_src, image_index)
        if result != markup:
            return SubstitutionResult(result, "positional")

    if old_src in markup:
        return SubstitutionResult(markup.replace(old_src, new_src), "global_literal")

    return SubstitutionResult(markup, None)


@dataclass
class CorrectionOutcome:
    content: str
    applied: int = 0
    failed: List[str] = field(default_factory=list)
    applied_corrections: List[Correction] = field(default_factory=list)


def _as_correction(item: Union[Correction, dict]) -> Correction:
    if isinstance(item, Correction):
        return item
    return Correction.model_validate(item)


def apply_corrections(content: str, corrections: Iterable[Union[Correction, dict]]) -> CorrectionOutcome:
    """
    Apply `{find, replace}` pairs in order, each to every occurrence.

    A pair whose `find` text occurs nowhere (neither literally nor in its
    entity-escaped form) is reported in `failed`; all others count as applied.
    Re-running the same list is a no-op unless some `replace` contains its own
    `find` text.
    """
    outcome = CorrectionOutcome(content=content or "")
    for raw in corrections:
        correction = _as_correction(raw)
        find, replace = correction.find, correction.replace
        if not find:
            outcome.failed.append(find)
            continue

        if find in outcome.content:
            outcome.content = outcome.content.replace(find, replace)
        else:
            escaped = html.escape(find, quote=False)
            if escaped == find or escaped not in outcome.content:
                outcome.failed.append(find)
                continue
            outcome.content = outcome.content.replace(escaped, html.escape(replace, quote=False))

        outcome.applied += 1
        outcome.applied_corrections.append(correction)
    return outcome
