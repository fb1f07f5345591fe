"""Snapshot helpers for shared-post messages."""

from __future__ import annotations

import re

from blogx_chat.models import Post
from blogx_chat.schemas.direct_message import SharedPostPreview

_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_MARKUP_RE = re.compile(r"(^|\s)#{1,6}\s+|[*_`>~]+", re.MULTILINE)
_SPACE_RE = re.compile(r"\s+")


def plain_excerpt(markdown: str, length: int) -> str:
    """Reduce markdown to a single line of plain text of at most ``length`` chars.

    Truncation happens at a word boundary when possible and is marked with
    an ellipsis.
    """
    text = _IMAGE_RE.sub(" ", markdown)
    text = _LINK_RE.sub(r"\1", text)
    text = _MARKUP_RE.sub(" ", text)
    text = _SPACE_RE.sub(" ", text).strip()
    if len(text) <= length:
        return text

    cut = text[:length].rstrip()
    space = cut.rfind(" ")
    if space > length // 2:
        cut = cut[:space]
    return cut.rstrip(" .,;:") + "..."


def build_shared_preview(post: Post, excerpt_length: int) -> SharedPostPreview:
    """Capture the preview stored with a shared-post message.

    The snapshot is taken once; later edits to the post do not change it.
    """
    return SharedPostPreview(
        title=post.title,
        excerpt=plain_excerpt(post.content, excerpt_length),
        image=post.image,
    )
