"""Tests for local_extractor.py"""

import json

import pytest

from app.core.local_extractor import extract_locally, parse_date


LONG = "This paragraph is comfortably longer than the minimum block length filter."


def page(head: str = "", body: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


def json_ld(data) -> str:
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


class TestParseDate:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2024-09-20T10:00:00Z", "2024-09-20"),
            ("20 Sep 2024", "2024-09-20"),
            ("2024-09-20", "2024-09-20"),
            ("September 20, 2024", "2024-09-20"),
            ("Sept. 20, 2024", "2024-09-20"),
            ("Fri, 20 Sep 2024 10:00:00 +0000", "2024-09-20"),
            ("2024/09/20", "2024-09-20"),
        ],
    )
    def test_known_layouts(self, raw, expected):
        assert parse_date(raw) == expected

    def test_normalized_to_utc(self):
        assert parse_date("2024-09-20T23:30:00-05:00") == "2024-09-21"

    @pytest.mark.parametrize("raw", ["", None, "sometime last week", "Volume 12"])
    def test_unparsable_returns_none(self, raw):
        assert parse_date(raw) is None


class TestTitle:
    def test_title_tag_wins(self):
        hints = extract_locally(
            page('<title>Doc Title</title><meta property="og:title" content="OG Title">', "<h1>H1</h1>")
        )
        assert hints.title.found is True
        assert hints.title.value == "Doc Title"

    def test_og_title_fallback(self):
        hints = extract_locally(page('<meta property="og:title" content="OG Title">', "<h1>H1</h1>"))
        assert hints.title.value == "OG Title"

    def test_twitter_title_fallback(self):
        hints = extract_locally(page('<meta name="twitter:title" content="Tweet Title">'))
        assert hints.title.value == "Tweet Title"

    def test_h1_fallback(self):
        hints = extract_locally(page(body="<h1>Only Heading</h1>"))
        assert hints.title.value == "Only Heading"


class TestAuthor:
    def test_meta_author(self):
        hints = extract_locally(page('<meta name="author" content="Ada Lovelace">'))
        assert hints.author.value == "Ada Lovelace"

    def test_dublin_core_creator(self):
        hints = extract_locally(page('<meta name="DC.creator" content="Grace Hopper">'))
        assert hints.author.value == "Grace Hopper"

    def test_article_author_url_is_skipped(self):
        hints = extract_locally(
            page(
                '<meta property="article:author" content="https://facebook.com/someone">',
                '<span class="byline">By Alan Turing</span>',
            )
        )
        assert hints.author.value == "Alan Turing"

    def test_microdata_author(self):
        hints = extract_locally(
            page(body='<div itemprop="author"><span itemprop="name">Barbara Liskov</span></div>')
        )
        assert hints.author.value == "Barbara Liskov"

    def test_byline_container(self):
        hints = extract_locally(page(body='<p class="post-author">Written by Edsger Dijkstra</p>'))
        assert hints.author.value == "Edsger Dijkstra"

    def test_generic_author_class_length_filter(self):
        bio = "A" * 300
        hints = extract_locally(page(body=f'<div class="author">{bio}</div>'))
        assert hints.author.found is False

    def test_json_ld_overrides_meta(self):
        hints = extract_locally(
            page(
                '<meta name="author" content="Site Staff">'
                + json_ld({"@type": "NewsArticle", "author": [{"name": "Jane Doe"}, {"name": "John Roe"}]})
            )
        )
        assert hints.author.value == "Jane Doe, John Roe"

    def test_json_ld_non_article_ignored(self):
        hints = extract_locally(
            page(
                '<meta name="author" content="Site Staff">'
                + json_ld({"@type": "WebSite", "author": {"name": "Jane Doe"}})
            )
        )
        assert hints.author.value == "Site Staff"

    def test_json_ld_graph(self):
        hints = extract_locally(
            page(json_ld({"@graph": [{"@type": "WebPage"}, {"@type": "BlogPosting", "author": "Jane Doe"}]}))
        )
        assert hints.author.value == "Jane Doe"

    def test_malformed_json_ld_is_skipped(self):
        html = page('<meta name="author" content="Ada">' '<script type="application/ld+json">{not json</script>')
        hints = extract_locally(html)
        assert hints.author.value == "Ada"


class TestDate:
    def test_meta_published_time(self):
        hints = extract_locally(page('<meta property="article:published_time" content="2024-09-20T10:00:00Z">'))
        assert hints.date_published.value == "2024-09-20"
        assert hints.date_published.found is True

    def test_time_element(self):
        hints = extract_locally(page(body='<time datetime="2023-01-05">Jan 5</time>'))
        assert hints.date_published.value == "2023-01-05"

    def test_visible_date_text(self):
        hints = extract_locally(page(body="<p>Posted on March 3, 2022 by the editors</p>"))
        assert hints.date_published.value == "2022-03-03"

    def test_unparsable_date_not_fabricated(self):
        hints = extract_locally(page('<meta name="date" content="last Tuesday">'))
        assert hints.date_published.found is False
        assert hints.date_published.value == ""

    def test_json_ld_date_overrides(self):
        hints = extract_locally(
            page(
                '<meta name="date" content="2020-01-01">'
                + json_ld({"@type": "Article", "datePublished": "2024-09-20T00:00:00Z"})
            )
        )
        assert hints.date_published.value == "2024-09-20"

    def test_unparsable_json_ld_date_keeps_earlier(self):
        hints = extract_locally(
            page('<meta name="date" content="2020-01-01">' + json_ld({"@type": "Article", "datePublished": "soon"}))
        )
        assert hints.date_published.value == "2020-01-01"


class TestBodyText:
    def test_main_container_blocks(self):
        hints = extract_locally(
            page(
                body=(
                    "<nav><p>" + LONG + " nav</p></nav>"
                    "<article><h2>Intro</h2><p>short</p><p>" + LONG + "</p><ul><li>item</li></ul></article>"
                    "<p>Outside paragraph that is also long enough to pass the filter.</p>"
                )
            )
        )
        body = hints.body_text.value
        assert "Intro" in body
        assert LONG in body
        assert "item" in body
        assert "short" not in body
        assert "Outside paragraph" not in body

    def test_paragraph_fallback(self):
        hints = extract_locally(page(body=f"<div><p>{LONG}</p><p>tiny</p></div>"))
        assert hints.body_text.value == LONG

    def test_empty_container_falls_back_to_paragraphs(self):
        hints = extract_locally(page(body=f"<main></main><div><p>{LONG}</p></div>"))
        assert hints.body_text.value == LONG


class TestExtractLocally:
    def test_empty_html_all_not_found(self):
        hints = extract_locally("")
        assert hints.any_found is False

    def test_garbage_never_raises(self):
        hints = extract_locally("<<<>>> not really html </div></div>")
        assert hints.title.found is False

    def test_json_ld_scenario(self):
        html = page(
            "<title>How We Scaled Search</title>"
            + json_ld(
                {
                    "@context": "https://schema.org",
                    "@type": "Article",
                    "author": {"@type": "Person", "name": "Jane Doe"},
                    "datePublished": "2024-09-20T00:00:00Z",
                }
            ),
            f"<article><p>{LONG}</p></article>",
        )

        hints = extract_locally(html)

        assert hints.title.found is True
        assert hints.title.value == "How We Scaled Search"
        assert hints.author.value == "Jane Doe"
        assert hints.date_published.value == "2024-09-20"
        assert hints.date_published.found is True
