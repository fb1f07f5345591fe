"""Tests for shared-post preview snapshots."""

from blogx_chat.services.previews import build_shared_preview, plain_excerpt


def test_plain_excerpt_strips_markdown():
    text = "# Title\n\nSome **bold** and _italic_ text with a [link](https://x.y) ![img](a.png)"

    assert plain_excerpt(text, 200) == "Title Some bold and italic text with a link"


def test_plain_excerpt_truncates_on_word_boundary():
    text = "alpha beta gamma delta epsilon zeta"

    excerpt = plain_excerpt(text, 20)

    assert excerpt.endswith("...")
    assert len(excerpt) <= 23
    assert excerpt == "alpha beta gamma..."


def test_short_text_is_unchanged():
    assert plain_excerpt("short", 150) == "short"


def test_build_shared_preview_from_post(test_post):
    preview = build_shared_preview(test_post, 150)

    assert preview.title == test_post.title
    assert preview.image == test_post.image
    assert "bold claim about sockets and queues" in preview.excerpt
    assert "**" not in preview.excerpt
