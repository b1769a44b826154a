import pytest

from parley.core.mentions import is_addressed, strip_mentions
from parley.core.models import Identity, RoomType

HENRY = Identity.parse("henry@example.org")
BARE_HENRY = Identity.parse("henry")


@pytest.mark.parametrize("text", ["hello", "what's up?", "nothing about names"])
def test_direct_room_is_always_addressed(text):
    assert is_addressed(text, RoomType.DIRECT, HENRY) is True


def test_group_message_without_name_is_not_addressed():
    assert is_addressed("good morning everyone", RoomType.GROUP, HENRY) is False


def test_name_inside_longer_word_is_not_a_mention():
    assert is_addressed("henrysmith did this", RoomType.GROUP, BARE_HENRY) is False


def test_name_followed_by_comma_is_a_mention():
    assert is_addressed("henry, hi", RoomType.GROUP, BARE_HENRY) is True


def test_name_colon_idiom_is_a_mention():
    assert is_addressed("ask henry: what time is it", RoomType.GROUP, BARE_HENRY) is True


def test_mention_is_case_insensitive():
    assert is_addressed("Hey HENRY!", RoomType.GROUP, HENRY) is True


def test_at_prefixed_name_is_a_mention():
    assert is_addressed("@henry can you help", RoomType.GROUP, HENRY) is True


def test_full_address_is_a_mention():
    assert is_addressed("ping henry@example.org please", RoomType.GROUP, HENRY) is True


def test_full_address_match_is_case_sensitive():
    assert is_addressed("HENRY@EXAMPLE.ORG", RoomType.GROUP, HENRY) is False


def test_strip_leading_name_with_comma():
    assert strip_mentions("henry, what's the weather?", HENRY) == "what's the weather?"


def test_strip_name_colon_glued_to_text():
    assert strip_mentions("henry:summarise this", HENRY) == "summarise this"


def test_strip_full_address_and_keeps_spacing():
    assert strip_mentions("hi  henry@example.org  there", HENRY) == "hi  there"


def test_strip_does_not_touch_longer_words():
    assert strip_mentions("henrysmith said hi", HENRY) == "henrysmith said hi"


def test_strip_only_mention_leaves_nothing():
    assert strip_mentions("@Henry!", HENRY) == ""
