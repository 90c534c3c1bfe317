import re
from dataclasses import dataclass
from typing import Callable, Pattern

from yxorp.addressing import AddressCodec, TargetAddress


@dataclass(frozen=True)
class RewriteContext:
    """What a rule needs to know about the page being rewritten."""

    codec: AddressCodec
    target: TargetAddress


Substitution = Callable[["re.Match[str]", RewriteContext], str]


@dataclass(frozen=True)
class RewriteRule:
    name: str
    pattern: Pattern[str]
    substitute: Substitution

    def apply(self, text: str, context: RewriteContext) -> str:
        return self.pattern.sub(lambda match: self.substitute(match, context), text)


@dataclass(frozen=True)
class RuleSet:
    """Rules applied left to right over the same text."""

    name: str
    rules: tuple[RewriteRule, ...]

    def apply(self, text: str, context: RewriteContext) -> str:
        for rule in self.rules:
            text = rule.apply(text, context)
        return text


def remove(match: "re.Match[str]", context: RewriteContext) -> str:
    return ""


def rewrite_group(group: str | int) -> Substitution:
    """Substitution that rewrites one captured URL and keeps the rest of the match."""

    def substitute(match: "re.Match[str]", context: RewriteContext) -> str:
        literal = match.group(group)
        rewritten = context.codec.rewrite_url(literal, context.target)
        if rewritten == literal:
            return match.group(0)
        whole = match.group(0)
        start = match.start(group) - match.start()
        end = match.end(group) - match.start()
        return f"{whole[:start]}{rewritten}{whole[end:]}"

    return substitute
