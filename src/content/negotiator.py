"""
Post content negotiation.

A Ghost client may submit any subset of ``markdown``, ``html``, ``lexical``
and ``mobiledoc`` for one post. Exactly one of them becomes the stored
content, tagged with a ContentFormat:

    default          markdown > html > lexical > mobiledoc
    ?source=html     html > markdown rendered to HTML > lexical > mobiledoc

Markdown stored as-is is MARKDOWN; everything else is HTML. Lexical and
Mobiledoc documents are kept as opaque text in the HTML slot.
"""
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import markdown
from markdown.extensions import Extension
from markdown.postprocessors import Postprocessor

logger = logging.getLogger(__name__)

SOURCE_HTML = "html"

DEFAULT_PRECEDENCE = ("markdown", "html", "lexical", "mobiledoc")
HTML_SOURCE_PRECEDENCE = ("html", "markdown", "lexical", "mobiledoc")

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "sane_lists"]


class ContentFormat(str, Enum):
    MARKDOWN = "MARKDOWN"
    HTML = "HTML"


@dataclass(frozen=True)
class NegotiatedContent:
    content: str
    format: ContentFormat


IMG_TAG = re.compile(r"<img\s([^>]*?)\s*/?>")
IMG_ATTRIBUTE = re.compile(r'([\w-]+)="([^"]*)"')


class ImageTagPostprocessor(Postprocessor):
    """Rewrite every Markdown <img> as <img src="…" alt="…" title="…" />.

    The serializer orders attributes on its own, so the tag is rebuilt as text.
    Runs before raw HTML is restored, which leaves <img> tags the author wrote
    by hand untouched.
    """

    def run(self, text):
        return IMG_TAG.sub(self._rewrite, text)

    @staticmethod
    def _rewrite(match):
        attributes = dict(IMG_ATTRIBUTE.findall(match.group(1)))
        tag = f'<img src="{attributes.get("src", "")}" alt="{attributes.get("alt", "")}"'
        if attributes.get("title"):
            tag += f' title="{attributes["title"]}"'
        return tag + " />"


class NormalizedImagesExtension(Extension):
    def extendMarkdown(self, md):
        # raw_html restores stashed HTML at priority 30
        md.postprocessors.register(ImageTagPostprocessor(md), "normalized_images", 35)


def render_markdown(text: str) -> str:
    """Render Markdown to HTML with self-closing, attribute-normalized images."""
    return markdown.markdown(
        text,
        extensions=MARKDOWN_EXTENSIONS + [NormalizedImagesExtension()],
        output_format="xhtml",
    )


def _field(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    # Some clients post lexical/mobiledoc as a decoded JSON object
    return json.dumps(value)


def negotiate(payload: Dict[str, Any], source_override: Optional[str] = None) -> NegotiatedContent:
    """
    Decide the canonical stored content for a submitted post.

    Args:
        payload: Post object as submitted by the client
        source_override: Value of the ``source`` query parameter, if any

    Returns:
        NegotiatedContent. When no content field is present the content is
        empty and the format HTML; rejecting that is the caller's decision.

    Example:
        >>> negotiate({"markdown": "# Hi"})
        NegotiatedContent(content='# Hi', format=<ContentFormat.MARKDOWN: 'MARKDOWN'>)
        >>> negotiate({"markdown": "# Hi"}, "html").content
        '<h1>Hi</h1>'
    """
    html_source = source_override == SOURCE_HTML
    precedence = HTML_SOURCE_PRECEDENCE if html_source else DEFAULT_PRECEDENCE

    for name in precedence:
        value = _field(payload, name)
        if not value:
            continue

        if name == "markdown":
            if html_source:
                logger.debug("Rendering Markdown to HTML for source=html")
                return NegotiatedContent(render_markdown(value), ContentFormat.HTML)
            return NegotiatedContent(value, ContentFormat.MARKDOWN)

        logger.debug(f"Using {name} content ({len(value)} chars)")
        return NegotiatedContent(value, ContentFormat.HTML)

    return NegotiatedContent("", ContentFormat.HTML)
