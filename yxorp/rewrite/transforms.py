"""
Regex rule sets for the bodies the proxy rewrites.

These are best-effort text transforms, not parsers: malformed or partial
markup must never make a rewrite fail, it just leaves the text alone.
"""

import re

from yxorp.addressing import TargetAddress
from yxorp.addressing.protocols import PROTOCOL_PORTS
from yxorp.rewrite.rules import (
    RewriteContext,
    RewriteRule,
    RuleSet,
    remove,
    rewrite_group,
)

# Last labels trusted by the domain-literal heuristic
TLD_ALLOW_LIST = (
    "com",
    "net",
    "org",
    "io",
    "co",
    "uk",
    "de",
    "fr",
    "jp",
    "ru",
    "cn",
    "info",
    "biz",
    "edu",
    "gov",
    "app",
    "dev",
    "me",
    "tv",
    "us",
)

_SCHEMES = "|".join(sorted(PROTOCOL_PORTS, key=len, reverse=True))
_DOMAIN = r"[\w-]+(?:\.[\w-]+)+"
_TLD_DOMAIN = r"(?:[\w-]+\.)+(?:%s)" % "|".join(TLD_ALLOW_LIST)
# Dotless authorities (localhost, host:port) so proxy URLs match as one unit
_URL_HOST = r"(?:%s|[\w-]+:\d+|localhost)" % _DOMAIN

ATTRIBUTE_URL = re.compile(
    r"\b(?P<attr>href|src|url|action)(?P<eq>\s*=\s*)(?P<quote>[\"'])(?P<url>[^\"'<>]*)(?P=quote)",
    re.I,
)
INTEGRITY_ATTRIBUTE = re.compile(
    r"\s+integrity\s*=\s*(?:(?P<quote>[\"'])[^\"']*(?P=quote)|[^\s>\"']+)", re.I
)
CSS_URL = re.compile(
    r"url\(\s*(?P<quote>[\"']?)(?P<url>[^\"')\s]*)(?P=quote)\s*\)", re.I
)
CSS_IMPORT = re.compile(r"@import\s+(?P<quote>[\"'])(?P<url>[^\"']*)(?P=quote)", re.I)

PROTOCOL_RELATIVE_LITERAL = re.compile(
    r"(?P<quote>[\"'`])//(?P<host>%s)/" % _DOMAIN
)
ESCAPED_PROTOCOL_RELATIVE_LITERAL = re.compile(
    r"(?P<quote>[\"'])\\/\\/(?P<host>%s)\\/" % _DOMAIN
)
DOMAIN_LITERAL_LEFT = re.compile(
    r"(?P<quote>[\"'])(?P<domain>%s)(?P=quote)(?=\s*[!=]==?)" % _TLD_DOMAIN, re.I
)
DOMAIN_LITERAL_RIGHT = re.compile(
    r"(?P<op>[!=]==?\s*)(?P<quote>[\"'])(?P<domain>%s)(?P=quote)" % _TLD_DOMAIN,
    re.I,
)
SOURCE_MAP_COMMENT = re.compile(
    r"^[ \t]*//[#@][ \t]*sourceMappingURL=[^\r\n]*(?:\r?\n)?", re.M
)

ABSOLUTE_URL = re.compile(
    r"(?<![\w.+-])(?:%s)://%s(?:[\w.,@?^=%%&:/~+#-]*[\w@?^=%%&/~+#-])?"
    % (_SCHEMES, _URL_HOST),
    re.I,
)
ESCAPED_ABSOLUTE_URL = re.compile(
    r"(?<![\w.+-])(?:%s):\\/\\/%s(?:(?:\\/|[\w.,@?^=%%&:~+#-])*(?:\\/|[\w@?^=%%&~+#-]))?"
    % (_SCHEMES, _URL_HOST),
    re.I,
)


def _protocol_relative(escaped: bool):
    slash = "\\/" if escaped else "/"

    def substitute(match: "re.Match[str]", context: RewriteContext) -> str:
        host = match.group("host")
        codec = context.codec
        if codec.is_proxy_host(host):
            return match.group(0)
        authority = codec.encode_authority(
            TargetAddress.build(context.target.scheme, host)
        ).replace("/", slash)
        return (
            f"{match.group('quote')}{slash}{slash}{codec.origin.authority}"
            f"{slash}{authority}{slash}"
        )

    return substitute


def _domain_literal(match: "re.Match[str]", context: RewriteContext) -> str:
    codec = context.codec
    if codec.is_proxy_host(match.group("domain")):
        return match.group(0)
    quote = match.group("quote")
    op = match.groupdict().get("op") or ""
    return f"{op}{quote}{codec.origin.hostname}{quote}"


def _escaped_absolute_url(match: "re.Match[str]", context: RewriteContext) -> str:
    literal = match.group(0).replace("\\/", "/")
    rewritten = context.codec.rewrite_url(literal, context.target)
    if rewritten == literal:
        return match.group(0)
    return rewritten.replace("/", "\\/")


ATTRIBUTES = RuleSet(
    "attributes",
    (RewriteRule("attribute-url", ATTRIBUTE_URL, rewrite_group("url")),),
)

INTEGRITY = RuleSet(
    "integrity",
    (RewriteRule("strip-integrity", INTEGRITY_ATTRIBUTE, remove),),
)

CSS_URLS = RuleSet(
    "css-urls",
    (
        RewriteRule("css-url", CSS_URL, rewrite_group("url")),
        RewriteRule("css-import", CSS_IMPORT, rewrite_group("url")),
    ),
)

ABSOLUTE_URLS = RuleSet(
    "absolute-urls",
    (
        RewriteRule("absolute-url", ABSOLUTE_URL, rewrite_group(0)),
        RewriteRule("escaped-absolute-url", ESCAPED_ABSOLUTE_URL, _escaped_absolute_url),
    ),
)


def script_literal_rules(heuristics: bool = True) -> RuleSet:
    rules = [
        RewriteRule(
            "protocol-relative-literal",
            PROTOCOL_RELATIVE_LITERAL,
            _protocol_relative(escaped=False),
        ),
        RewriteRule(
            "escaped-protocol-relative-literal",
            ESCAPED_PROTOCOL_RELATIVE_LITERAL,
            _protocol_relative(escaped=True),
        ),
    ]
    if heuristics:
        rules += [
            RewriteRule("domain-literal-left", DOMAIN_LITERAL_LEFT, _domain_literal),
            RewriteRule("domain-literal-right", DOMAIN_LITERAL_RIGHT, _domain_literal),
        ]
    rules.append(RewriteRule("source-map-comment", SOURCE_MAP_COMMENT, remove))
    return RuleSet("script-literals", tuple(rules))
