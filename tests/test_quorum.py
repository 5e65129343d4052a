import pytest

from config import VotingSettings
from core.quorum import required_votes


@pytest.mark.parametrize("members, expected", [
    (1, 2),
    (3, 2),
    (7, 3),
    (10, 3),
    (11, 4),
    (33, 10),
    (40, 10),
    (1000, 10),
])
def test_group_quorum_is_clamped_fraction_of_members(members, expected):
    assert required_votes(True, members, VotingSettings()) == expected


@pytest.mark.parametrize("members", [1, 5, 500])
def test_private_chat_needs_single_vote(members):
    assert required_votes(False, members, VotingSettings()) == 1


def test_unknown_member_count_degrades_to_one():
    assert required_votes(True, None, VotingSettings()) == 1


def test_quorum_follows_runtime_settings():
    settings = VotingSettings()
    settings.update(quorum_fraction=0.5, min_votes=1, max_votes=3)

    assert required_votes(True, 2, settings) == 1
    assert required_votes(True, 4, settings) == 2
    assert required_votes(True, 100, settings) == 3
