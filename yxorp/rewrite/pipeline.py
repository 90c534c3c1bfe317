"""
Content-type driven rewrite pipelines.

A pipeline buffers the whole upstream body before rewriting it: URL patterns
can straddle chunk boundaries, and the corrected ``content-length`` is only
known once the rewritten body exists. The price is latency and memory
proportional to the body size, with no cap.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterable, Optional

from yxorp.rewrite.rules import RewriteContext, RuleSet
from yxorp.rewrite.transforms import (
    ABSOLUTE_URLS,
    ATTRIBUTES,
    CSS_URLS,
    INTEGRITY,
    script_literal_rules,
)
from yxorp.vars import (
    REWRITE_CSS_URLS,
    REWRITE_HTML_URLS,
    REWRITE_JS_URLS,
    REWRITE_JSON_URLS,
    REWRITE_SCRIPT_HEURISTICS,
)

logger = logging.getLogger("uvicorn.error")

HTML_TYPES = ("text/html", "application/xhtml+xml")
CSS_TYPES = ("text/css",)
SCRIPT_TYPES = ("text/javascript", "application/javascript")
DATA_TYPES = ("application/json", "text/xml", "application/xml", "application/rss+xml")


@dataclass(frozen=True)
class Pipeline:
    name: str
    stages: tuple[RuleSet, ...]

    def run(self, text: str, context: RewriteContext) -> str:
        for stage in self.stages:
            text = stage.apply(text, context)
        return text


@dataclass(frozen=True)
class RewrittenBody:
    content: bytes
    content_length: int


def build_pipelines(
    html: bool = True,
    css: bool = True,
    js: bool = True,
    data: bool = True,
    heuristics: bool = True,
) -> dict[str, Pipeline]:
    """Map media types to pipelines; a disabled category is left unmapped."""
    script_literals = script_literal_rules(heuristics)
    pipelines: dict[str, Pipeline] = {}

    if html:
        html_pipeline = Pipeline(
            "html", (script_literals, ATTRIBUTES, INTEGRITY, CSS_URLS, ABSOLUTE_URLS)
        )
        pipelines.update({media_type: html_pipeline for media_type in HTML_TYPES})
    if css:
        css_pipeline = Pipeline("css", (CSS_URLS, ABSOLUTE_URLS))
        pipelines.update({media_type: css_pipeline for media_type in CSS_TYPES})
    if js:
        js_pipeline = Pipeline("javascript", (script_literals, ABSOLUTE_URLS))
        pipelines.update({media_type: js_pipeline for media_type in SCRIPT_TYPES})
    if data:
        data_pipeline = Pipeline("data", (ABSOLUTE_URLS,))
        pipelines.update({media_type: data_pipeline for media_type in DATA_TYPES})

    return pipelines


PIPELINES = build_pipelines(
    html=REWRITE_HTML_URLS,
    css=REWRITE_CSS_URLS,
    js=REWRITE_JS_URLS,
    data=REWRITE_JSON_URLS,
    heuristics=REWRITE_SCRIPT_HEURISTICS,
)


def media_type(content_type: Optional[str]) -> str:
    """MIME type of a content-type value, parameters dropped."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def charset_of(content_type: Optional[str], default: str = "utf-8") -> str:
    if not content_type:
        return default
    for param in content_type.split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset" and value.strip():
            return value.strip().strip("\"'")
    return default


def select_pipeline(
    content_type: Optional[str], pipelines: Optional[dict[str, Pipeline]] = None
) -> Optional[Pipeline]:
    pipelines = PIPELINES if pipelines is None else pipelines
    return pipelines.get(media_type(content_type))


def rewrite_body(
    content: bytes, pipeline: Pipeline, context: RewriteContext, charset: str = "utf-8"
) -> RewrittenBody:
    if not content:
        return RewrittenBody(b"", 0)

    try:
        text = content.decode(charset)
    except (UnicodeDecodeError, LookupError) as e:
        logger.warning(
            f"Cannot decode {context.target.url} as {charset}, forwarding unchanged: {e}"
        )
        return RewrittenBody(content, len(content))

    rewritten = pipeline.run(text, context).encode(charset)
    return RewrittenBody(rewritten, len(rewritten))


async def buffer_and_rewrite(
    chunks: AsyncIterable[bytes],
    pipeline: Pipeline,
    context: RewriteContext,
    charset: str = "utf-8",
) -> RewrittenBody:
    """Accumulate the whole body, then rewrite it in one pass per stage."""
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
    return rewrite_body(bytes(buffer), pipeline, context, charset)
