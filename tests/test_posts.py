"""
Tests for post persistence.

Running Tests:
    $ PYTHONPATH=src python -m pytest tests/test_posts.py -v
"""
from datetime import datetime, timezone

import pytest

from content.negotiator import ContentFormat
from content.posts import (
    PostRepository,
    generate_excerpt,
    generate_slug,
    normalize_post_id,
    parse_published_at,
)
from gateway.errors import Conflict, ResourceNotFound, ValidationFailed


@pytest.fixture
def posts(database, clock):
    return PostRepository(database, clock=clock)


def test_create_markdown_draft(posts, blog):
    post = posts.create(blog, {"title": "Hello World", "markdown": "# Hi\n\nFirst post."})

    assert len(post.ghost_id) == 24
    assert post.slug == "hello-world"
    assert post.status == "draft"
    assert post.published_at is None
    assert post.content_format == ContentFormat.MARKDOWN
    assert post.markdown == "# Hi\n\nFirst post."
    assert "<h1>Hi</h1>" in post.html
    assert post.excerpt == "Hi First post."


def test_create_published_with_source_html(posts, blog, clock):
    post = posts.create(blog, {"title": "Out", "markdown": "# Hi", "status": "published"}, source="html")

    assert post.content_format == ContentFormat.HTML
    assert post.content == "<h1>Hi</h1>"
    assert post.markdown is None
    assert post.status == "published"
    assert post.published_at == clock()


def test_scheduled_status_is_stored_as_draft(posts, blog):
    assert posts.create(blog, {"title": "Later", "status": "scheduled"}).status == "draft"


def test_create_keeps_client_supplied_id(posts, blog):
    post = posts.create(blog, {"id": "5f1a2b3c4d5e6f7a8b9c0d1e", "title": "Mine"})
    assert post.ghost_id == "5f1a2b3c4d5e6f7a8b9c0d1e"


def test_duplicate_id_is_a_conflict(posts, blog):
    posts.create(blog, {"id": "5f1a2b3c4d5e6f7a8b9c0d1e", "title": "Mine"})

    with pytest.raises(Conflict) as exc_info:
        posts.create(blog, {"id": "5f1a2b3c4d5e6f7a8b9c0d1e", "title": "Again"})
    assert exc_info.value.status_code == 409


def test_slugs_are_unique_per_blog(posts, blog, other_blog):
    first = posts.create(blog, {"title": "Same Title"})
    second = posts.create(blog, {"title": "Same Title"})
    elsewhere = posts.create(other_blog, {"title": "Same Title"})

    assert first.slug == "same-title"
    assert second.slug == "same-title-1"
    assert elsewhere.slug == "same-title"


def test_get_accepts_uuid_form(posts, blog):
    created = posts.create(blog, {"id": "5f1a2b3c4d5e6f7a8b9c0d1e", "title": "Mine"})

    found = posts.get(blog.id, "5f1a2b3c-4d5e-6f7a-8b9c-0d1e000000000000")

    assert found.id == created.id


def test_get_is_scoped_to_blog(posts, blog, other_blog):
    created = posts.create(blog, {"title": "Private"})

    with pytest.raises(ResourceNotFound):
        posts.get(other_blog.id, created.ghost_id)


def test_list_pages_newest_first(posts, blog, clock):
    for number in range(5):
        posts.create(blog, {"title": f"Post {number}", "status": "published" if number % 2 else "draft"})
        clock.advance(minutes=1)

    page, total = posts.list(blog.id, page=1, limit=2)
    assert total == 5
    assert [post.title for post in page] == ["Post 4", "Post 3"]

    page, _ = posts.list(blog.id, page=3, limit=2)
    assert [post.title for post in page] == ["Post 0"]

    published, total = posts.list(blog.id, status="published")
    assert total == 2
    assert {post.title for post in published} == {"Post 1", "Post 3"}


def test_update_keeps_content_when_none_sent(posts, blog):
    created = posts.create(blog, {"title": "Draft", "markdown": "Body"})

    updated = posts.update(blog, created.ghost_id, {"title": "Renamed"})

    assert updated.content == "Body"
    assert updated.content_format == ContentFormat.MARKDOWN
    assert updated.slug == "renamed"


def test_update_replaces_content_and_format(posts, blog):
    created = posts.create(blog, {"title": "Draft", "markdown": "Body"})

    updated = posts.update(blog, created.ghost_id, {"html": "<p>New</p>"})

    assert updated.content == "<p>New</p>"
    assert updated.content_format == ContentFormat.HTML
    assert updated.slug == "draft", "Slug should not change when the title did not"


def test_publish_then_unpublish_keeps_published_at(posts, blog, clock):
    created = posts.create(blog, {"title": "Draft", "markdown": "Body"})

    clock.advance(minutes=5)
    published_time = clock()
    published = posts.update(blog, created.ghost_id, {"status": "published"})
    clock.advance(hours=1)
    unpublished = posts.update(blog, created.ghost_id, {"status": "draft"})

    assert published.published_at == published_time
    assert unpublished.status == "draft"
    assert unpublished.published_at == published_time
    assert unpublished.updated_at == clock()


def test_update_missing_post(posts, blog):
    with pytest.raises(ResourceNotFound):
        posts.update(blog, "0" * 24, {"title": "Nope"})


def test_custom_excerpt_wins(posts, blog):
    post = posts.create(blog, {"title": "T", "markdown": "Body", "custom_excerpt": "Short"})
    assert post.excerpt == "Short"


def test_lexical_content_has_no_excerpt(posts, blog):
    post = posts.create(blog, {"title": "T", "lexical": '{"root":{"children":[]}}'})
    assert post.excerpt == ""


@pytest.mark.parametrize("name,expected", [
    ("Hello, World!  Again", "hello-world-again"),
    ("  --Trim me-- ", "trim-me"),
    ("Zażółć gęślą", "za-gl"),
    ("", ""),
])
def test_generate_slug(name, expected):
    assert generate_slug(name) == expected


def test_normalize_post_id():
    assert normalize_post_id("5f1a2b3c4d5e6f7a8b9c0d1e") == "5f1a2b3c4d5e6f7a8b9c0d1e"
    assert normalize_post_id("5f1a2b3c-4d5e-6f7a-8b9c-0d1e000000000000") == "5f1a2b3c4d5e6f7a8b9c0d1e"


def test_generate_excerpt_strips_tags_and_entities():
    assert generate_excerpt("<p>Fish &amp; chips</p><p>Tea</p>") == "Fish & chips Tea"
    assert len(generate_excerpt("<p>" + "word " * 200 + "</p>")) == 500


def test_create_with_explicit_published_at(posts, blog):
    post = posts.create(blog, {"title": "Backdated", "markdown": "x", "status": "published",
                               "published_at": "2025-03-01T09:30:00.000Z"})

    assert post.published_at == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["yesterday", "2025-13-01T00:00:00Z"])
def test_invalid_published_at_is_a_validation_error(posts, blog, value):
    with pytest.raises(ValidationFailed, match="Invalid published_at"):
        posts.create(blog, {"title": "T", "markdown": "x", "status": "published", "published_at": value})

    draft = posts.create(blog, {"title": "Draft", "markdown": "x"})
    with pytest.raises(ValidationFailed):
        posts.update(blog, draft.ghost_id, {"status": "published", "published_at": value})


def test_parse_published_at():
    assert parse_published_at(None) is None
    assert parse_published_at("") is None
    assert parse_published_at("2025-03-01T09:30:00") == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert parse_published_at("2025-03-01T11:30:00+02:00") == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
