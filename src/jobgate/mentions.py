"""Provider capabilities and subject mention rendering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .policies import Subject
from .types import Provider


@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    subject_mentions: bool


_KNOWN_PROVIDERS: dict[str, ProviderCapabilities] = {
    Provider.SLACK.value: ProviderCapabilities(subject_mentions=True),
    Provider.DISCORD.value: ProviderCapabilities(subject_mentions=True),
}

_NO_CAPABILITIES = ProviderCapabilities(subject_mentions=False)


def resolve_provider_capabilities(provider: str) -> ProviderCapabilities:
    return _KNOWN_PROVIDERS.get(provider, _NO_CAPABILITIES)


def render_subject_mention(provider: str, subject: Subject) -> str | None:
    """Render one subject as a chat mention, or None when it has no mention form."""
    if subject.kind == "user":
        if subject.user_id == "*":
            return None
        if provider in _KNOWN_PROVIDERS:
            return f"<@{subject.user_id}>"
        return None
    if subject.provider != provider:
        return None
    if provider == Provider.SLACK.value:
        return f"<!subteam^{subject.group_id}>"
    if provider == Provider.DISCORD.value:
        return f"<@&{subject.group_id}>"
    return None


def render_subject_mentions(provider: str, subjects: Iterable[Subject]) -> list[str]:
    if not resolve_provider_capabilities(provider).subject_mentions:
        return []
    mentions = (render_subject_mention(provider, subject) for subject in subjects)
    return [mention for mention in mentions if mention]
