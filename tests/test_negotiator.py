"""
Tests for post content negotiation and Markdown rendering.
"""
import pytest

from content.negotiator import ContentFormat, NegotiatedContent, negotiate, render_markdown


def test_markdown_is_stored_as_markdown():
    assert negotiate({"markdown": "# Hi"}) == NegotiatedContent("# Hi", ContentFormat.MARKDOWN)


def test_source_html_renders_markdown():
    assert negotiate({"markdown": "# Hi"}, "html") == NegotiatedContent("<h1>Hi</h1>", ContentFormat.HTML)


def test_markdown_wins_over_html_by_default():
    result = negotiate({"html": "<p>x</p>", "markdown": "y"})
    assert result == NegotiatedContent("y", ContentFormat.MARKDOWN)


def test_html_wins_with_source_html():
    result = negotiate({"html": "<p>x</p>", "markdown": "y"}, "html")
    assert result == NegotiatedContent("<p>x</p>", ContentFormat.HTML)


def test_lexical_only_is_stored_verbatim_as_html():
    assert negotiate({"lexical": "{...}"}) == NegotiatedContent("{...}", ContentFormat.HTML)


def test_lexical_wins_over_mobiledoc():
    result = negotiate({"lexical": '{"root":{}}', "mobiledoc": '{"version":"0.3.1"}'})
    assert result.content == '{"root":{}}'


def test_decoded_json_documents_are_serialized():
    """Some clients send mobiledoc as an object instead of a JSON string."""
    result = negotiate({"mobiledoc": {"version": "0.3.1", "cards": []}})
    assert result.format == ContentFormat.HTML
    assert result.content == '{"version": "0.3.1", "cards": []}'


@pytest.mark.parametrize("payload", [{}, {"markdown": ""}, {"markdown": None, "html": ""}])
def test_no_content_yields_empty_html(payload):
    assert negotiate(payload) == NegotiatedContent("", ContentFormat.HTML)


def test_empty_markdown_falls_through_to_html():
    assert negotiate({"markdown": "", "html": "<p>x</p>"}).content == "<p>x</p>"


def test_unknown_source_override_uses_default_precedence():
    assert negotiate({"html": "<p>x</p>", "markdown": "y"}, "lexical").format == ContentFormat.MARKDOWN


def test_render_markdown_images_keep_only_src_alt_title():
    html = render_markdown('![A cat](https://cdn.example.com/cat.png "Cat") ![](/dog.png)')
    assert html == (
        '<p><img src="https://cdn.example.com/cat.png" alt="A cat" title="Cat" /> '
        '<img src="/dog.png" alt="" /></p>'
    )


def test_render_markdown_single_image_attribute_order():
    assert render_markdown('![A cat](/cat.png "Cat")') == '<p><img src="/cat.png" alt="A cat" title="Cat" /></p>'


def test_render_markdown_leaves_hand_written_img_tags_alone():
    html = render_markdown('<p><img width="10" src="/raw.png"></p>')
    assert '<img width="10" src="/raw.png">' in html


def test_render_markdown_fenced_code_and_tables():
    html = render_markdown("```\nprint('hi')\n```\n\n| a | b |\n|---|---|\n| 1 | 2 |\n")
    assert "<pre><code>" in html
    assert "<table>" in html
