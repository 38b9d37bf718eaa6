from __future__ import annotations

from jobgate.mentions import (
    render_subject_mention,
    render_subject_mentions,
    resolve_provider_capabilities,
)
from jobgate.policies import Subject


def test_known_providers_have_capabilities() -> None:
    assert resolve_provider_capabilities("slack").subject_mentions
    assert resolve_provider_capabilities("discord").subject_mentions
    assert not resolve_provider_capabilities("irc").subject_mentions


def test_render_mentions_per_provider() -> None:
    assert render_subject_mention("slack", Subject.user("U1")) == "<@U1>"
    assert render_subject_mention("slack", Subject.group("slack", "S1")) == "<!subteam^S1>"
    assert render_subject_mention("discord", Subject.group("discord", "R1")) == "<@&R1>"
    assert render_subject_mention("slack", Subject.user("*")) is None
    assert render_subject_mention("slack", Subject.group("discord", "R1")) is None


def test_render_mentions_skips_unrenderable_subjects() -> None:
    subjects = [Subject.user("U1"), Subject.user("*"), Subject.group("slack", "S1")]
    assert render_subject_mentions("slack", subjects) == ["<@U1>", "<!subteam^S1>"]
    assert render_subject_mentions("irc", subjects) == []
