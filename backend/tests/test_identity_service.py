"""
身份解析单元测试
"""
from types import SimpleNamespace

import pytest

from connected_mate.core.exceptions import MissingIdentityError, MissingNicknameError, ValidationError
from connected_mate.models.session import AnonymityLevel
from connected_mate.services.identity_service import (
    DisplayIdentity,
    generate_anonymous_identifier,
    resolve_identity,
)


def make_participant(**fields):
    defaults = {
        "anonymous_identifier": None,
        "nickname": None,
        "real_name": None,
        "emoji": None,
        "color": None,
    }
    defaults.update(fields)
    return SimpleNamespace(**defaults)


FULL = make_participant(
    anonymous_identifier="Participant-7F3A9C",
    nickname="Pixel",
    real_name="Camille Durand",
)


class TestAnonymousLevel:
    """anonymous模式总是显示匿名标识"""

    def test_label_is_anonymous_identifier(self):
        identity = resolve_identity(AnonymityLevel.ANONYMOUS, FULL)
        assert identity.label == "Participant-7F3A9C"

    def test_never_leaks_nickname_or_real_name(self):
        identity = resolve_identity("anonymous", FULL)
        assert identity.label not in ("Pixel", "Camille Durand")

    def test_missing_identifier_fails(self):
        participant = make_participant(nickname="Pixel", real_name="Camille Durand")
        with pytest.raises(MissingIdentityError):
            resolve_identity(AnonymityLevel.ANONYMOUS, participant)

    def test_falls_back_to_session_defaults(self):
        identity = resolve_identity(AnonymityLevel.ANONYMOUS, FULL, default_color="#112233", default_emoji="🦊")
        assert identity.color == "#112233"
        assert identity.emoji == "🦊"

    def test_participant_values_override_defaults(self):
        participant = make_participant(anonymous_identifier="Participant-1", color="#ff0000", emoji="🐙")
        identity = resolve_identity(AnonymityLevel.ANONYMOUS, participant, default_color="#112233", default_emoji="🦊")
        assert identity == DisplayIdentity(label="Participant-1", color="#ff0000", emoji="🐙")


class TestSemiAnonymousLevel:
    """semi-anonymous模式显示昵称"""

    def test_label_is_nickname(self):
        assert resolve_identity(AnonymityLevel.SEMI_ANONYMOUS, FULL).label == "Pixel"

    def test_missing_nickname_never_falls_back_to_real_name(self):
        participant = make_participant(anonymous_identifier="Participant-1", real_name="Camille Durand")
        with pytest.raises(MissingNicknameError):
            resolve_identity(AnonymityLevel.SEMI_ANONYMOUS, participant)

    def test_blank_nickname_counts_as_missing(self):
        with pytest.raises(MissingNicknameError):
            resolve_identity(AnonymityLevel.SEMI_ANONYMOUS, make_participant(nickname="   "))


class TestNonAnonymousLevel:
    """non-anonymous模式显示实名"""

    def test_label_is_real_name(self):
        assert resolve_identity(AnonymityLevel.NON_ANONYMOUS, FULL).label == "Camille Durand"

    def test_missing_real_name_fails(self):
        participant = make_participant(anonymous_identifier="Participant-1", nickname="Pixel")
        with pytest.raises(MissingIdentityError):
            resolve_identity(AnonymityLevel.NON_ANONYMOUS, participant)


class TestResolverProperties:
    """纯函数性质"""

    @pytest.mark.parametrize("level", list(AnonymityLevel))
    @pytest.mark.parametrize("present", [True, False])
    def test_deterministic_across_matrix(self, level, present):
        participant = FULL if present else make_participant()
        outcomes = []
        for _ in range(2):
            try:
                outcomes.append(resolve_identity(level, participant, "#000000", "⭐"))
            except (MissingIdentityError, MissingNicknameError) as e:
                outcomes.append(type(e))
        assert outcomes[0] == outcomes[1]
        if present:
            assert isinstance(outcomes[0], DisplayIdentity)
        else:
            assert outcomes[0] in (MissingIdentityError, MissingNicknameError)

    def test_does_not_mutate_participant(self):
        participant = make_participant(nickname="Pixel")
        before = dict(vars(participant))
        resolve_identity(AnonymityLevel.SEMI_ANONYMOUS, participant)
        assert vars(participant) == before

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError):
            resolve_identity("fully-anonymous", FULL)


class TestAnonymousIdentifierGeneration:

    def test_uses_prefix_and_random_suffix(self):
        identifier = generate_anonymous_identifier()
        prefix, suffix = identifier.rsplit("-", 1)
        assert prefix == "Participant"
        assert len(suffix) == 6

    def test_avoids_forbidden_values(self):
        identifier = generate_anonymous_identifier(("Pixel", "Camille Durand", None))
        assert identifier not in ("Pixel", "Camille Durand")

    def test_identifiers_are_not_reused(self):
        generated = {generate_anonymous_identifier() for _ in range(20)}
        assert len(generated) == 20
