import pytest

from yxorp.rewrite import (
    build_pipelines,
    buffer_and_rewrite,
    charset_of,
    media_type,
    rewrite_body,
    select_pipeline,
)

PROXY = "http://localhost:5050"


async def _chunks(*parts):
    for part in parts:
        yield part


class TestSelection:
    @pytest.mark.parametrize(
        "content_type, expected",
        [
            ("text/html", "html"),
            ("text/html; charset=utf-8", "html"),
            ("application/xhtml+xml", "html"),
            ("text/css; charset=utf-8", "css"),
            ("TEXT/CSS", "css"),
            ("text/javascript", "javascript"),
            ("application/javascript; charset=utf-8", "javascript"),
            ("application/json", "data"),
            ("text/xml", "data"),
            ("application/xml", "data"),
            ("application/rss+xml", "data"),
        ],
    )
    def test_known_types(self, content_type, expected):
        pipelines = build_pipelines()

        assert select_pipeline(content_type, pipelines).name == expected

    @pytest.mark.parametrize("content_type", [None, "", "image/png", "text/plain"])
    def test_pass_through_types(self, content_type):
        assert select_pipeline(content_type, build_pipelines()) is None

    def test_disabled_category_passes_through(self):
        pipelines = build_pipelines(html=False, data=False)

        assert select_pipeline("text/html", pipelines) is None
        assert select_pipeline("application/json", pipelines) is None
        assert select_pipeline("text/css", pipelines).name == "css"

    def test_stage_order(self):
        pipelines = build_pipelines()

        assert [s.name for s in pipelines["text/html"].stages] == [
            "script-literals",
            "attributes",
            "integrity",
            "css-urls",
            "absolute-urls",
        ]
        assert [s.name for s in pipelines["text/css"].stages] == [
            "css-urls",
            "absolute-urls",
        ]
        assert [s.name for s in pipelines["text/javascript"].stages] == [
            "script-literals",
            "absolute-urls",
        ]
        assert [s.name for s in pipelines["application/json"].stages] == [
            "absolute-urls"
        ]


def test_media_type_and_charset():
    assert media_type("Text/HTML ; charset=UTF-8") == "text/html"
    assert media_type(None) == ""
    assert charset_of('text/html; charset="ISO-8859-1"') == "ISO-8859-1"
    assert charset_of("text/html") == "utf-8"
    assert charset_of(None) == "utf-8"


class TestHtmlPipeline:
    def test_full_document(self, rewrite_context):
        html = (
            "<html><head>"
            '<link rel="stylesheet" href="/style.css">'
            '<script src="//cdn.example.net/lib.js" integrity="sha384-abc"></script>'
            "<style>body { background: url('/bg.png'); }</style>"
            "</head><body>"
            '<a href="https://other.test/page">other</a>'
            '<img src="logo.png">'
            "<p>Mirror at https://mirror.example.org/file.zip</p>"
            "</body></html>"
        )

        result = build_pipelines()["text/html"].run(html, rewrite_context())

        assert f'href="{PROXY}/example.com/style.css"' in result
        assert 'src="//localhost:5050/cdn.example.net/lib.js"' in result
        assert "integrity" not in result
        assert f"url('{PROXY}/example.com/bg.png')" in result
        assert f'href="{PROXY}/other.test/page"' in result
        assert 'src="logo.png"' in result
        assert f"Mirror at {PROXY}/mirror.example.org/file.zip" in result

    def test_rewriting_twice_changes_nothing(self, rewrite_context):
        html = '<a href="/a">a</a><a href="https://other.test/b">b</a>'
        pipeline = build_pipelines()["text/html"]

        once = pipeline.run(html, rewrite_context())

        assert pipeline.run(once, rewrite_context()) == once

    def test_nested_url_in_query_matches_across_content_types(self, rewrite_context):
        html = '<a href="https://other.org/login?next=https://other.org/home">x</a>'
        data = '{"u":"https://other.org/login?next=https://other.org/home"}'
        pipelines = build_pipelines()
        context = rewrite_context()
        expected = f"{PROXY}/other.org/login?next=https://other.org/home"

        html_once = pipelines["text/html"].run(html, context)
        data_once = pipelines["application/json"].run(data, context)

        assert html_once == f'<a href="{expected}">x</a>'
        assert data_once == f'{{"u":"{expected}"}}'
        assert pipelines["text/html"].run(html_once, context) == html_once
        assert pipelines["application/json"].run(data_once, context) == data_once


class TestRewriteBody:
    def test_empty_body(self, rewrite_context):
        pipeline = build_pipelines()["text/html"]

        result = rewrite_body(b"", pipeline, rewrite_context())

        assert result.content == b""
        assert result.content_length == 0

    def test_length_is_recomputed(self, rewrite_context):
        pipeline = build_pipelines()["text/css"]
        body = b"a { background: url(/x.png) }"

        result = rewrite_body(body, pipeline, rewrite_context())

        assert result.content == f"a {{ background: url({PROXY}/example.com/x.png) }}".encode()
        assert result.content_length == len(result.content)
        assert result.content_length > len(body)

    def test_declared_charset_is_used(self, rewrite_context):
        pipeline = build_pipelines()["text/html"]
        body = "café <a href='/menu'>".encode("latin-1")

        result = rewrite_body(body, pipeline, rewrite_context(), "latin-1")

        assert result.content == f"café <a href='{PROXY}/example.com/menu'>".encode(
            "latin-1"
        )

    def test_undecodable_body_is_forwarded_unchanged(self, rewrite_context):
        pipeline = build_pipelines()["text/html"]
        body = b"\xff\xfe<a href='/x'>"

        result = rewrite_body(body, pipeline, rewrite_context(), "utf-8")

        assert result.content == body
        assert result.content_length == len(body)

    def test_unknown_charset_is_forwarded_unchanged(self, rewrite_context):
        pipeline = build_pipelines()["text/html"]
        body = b"<a href='/x'>"

        result = rewrite_body(body, pipeline, rewrite_context(), "no-such-charset")

        assert result.content == body


@pytest.mark.asyncio
async def test_buffering_rewrites_urls_split_across_chunks(rewrite_context):
    pipeline = build_pipelines()["text/html"]

    result = await buffer_and_rewrite(
        _chunks(b'<a href="https://exa', b'mple.com/x">', b"</a>"),
        pipeline,
        rewrite_context(),
    )

    assert result.content == f'<a href="{PROXY}/example.com/x"></a>'.encode()
    assert result.content_length == len(result.content)


@pytest.mark.asyncio
async def test_buffering_empty_stream(rewrite_context):
    result = await buffer_and_rewrite(
        _chunks(), build_pipelines()["application/json"], rewrite_context()
    )

    assert result.content == b""
    assert result.content_length == 0
