from .pipeline import (
    PIPELINES,
    Pipeline,
    RewrittenBody,
    buffer_and_rewrite,
    build_pipelines,
    charset_of,
    media_type,
    rewrite_body,
    select_pipeline,
)
from .rules import RewriteContext, RewriteRule, RuleSet

__all__ = [
    "PIPELINES",
    "Pipeline",
    "RewriteContext",
    "RewriteRule",
    "RewrittenBody",
    "RuleSet",
    "buffer_and_rewrite",
    "build_pipelines",
    "charset_of",
    "media_type",
    "rewrite_body",
    "select_pipeline",
]
