from cardbutler.models.statement import ExtractedFields, MatchConfidence, MatchedBy
from cardbutler.services.account_matcher import AccountMatcher, normalize_name


def test_full_card_beats_name(make_card):
    by_name = make_card("a", holder_name="李四", last_four_digits="1111")
    by_card = make_card("b", holder_name="王五", last_four_digits="9012")
    fields = ExtractedFields(full_card_number="6225888812349012", last_four="9012", holder_name="李四")

    result = AccountMatcher().match(fields, [by_name, by_card])

    assert result.found
    assert result.account.sync_id == "b"
    assert result.matched_by == MatchedBy.FULL_CARD
    assert result.confidence == MatchConfidence.HIGH


def test_unique_last_four_is_medium(make_card):
    cards = [make_card("a", last_four_digits="1111"), make_card("b", last_four_digits="5678")]

    result = AccountMatcher().match(ExtractedFields(last_four="5678"), cards)

    assert result.account.sync_id == "b"
    assert result.matched_by == MatchedBy.LAST_FOUR
    assert result.confidence == MatchConfidence.MEDIUM


def test_same_last_four_is_ambiguous_and_keeps_first(make_card):
    cards = [make_card("first", last_four_digits="5678"), make_card("second", last_four_digits="5678")]

    result = AccountMatcher().match(ExtractedFields(last_four="5678"), cards)

    assert result.account.sync_id == "first"
    assert result.confidence == MatchConfidence.AMBIGUOUS


def test_name_match_ignores_case_and_spaces(make_card):
    cards = [make_card("a", holder_name="Zhang San", last_four_digits="")]

    result = AccountMatcher().match(ExtractedFields(holder_name="ZHANGSAN"), cards)

    assert result.account.sync_id == "a"
    assert result.matched_by == MatchedBy.NAME
    assert result.confidence == MatchConfidence.LOW


def test_falls_through_to_name_when_last_four_unknown(make_card):
    cards = [make_card("a", holder_name="张三", last_four_digits="1111")]

    result = AccountMatcher().match(ExtractedFields(last_four="0000", holder_name="张 三"), cards)

    assert result.matched_by == MatchedBy.NAME


def test_deleted_cards_are_never_matched(make_card):
    cards = [make_card("gone", last_four_digits="5678", is_deleted=True)]

    result = AccountMatcher().match(ExtractedFields(last_four="5678", holder_name="张三"), cards)

    assert not result.found
    assert result.matched_by == ""


def test_no_evidence_no_match(make_card):
    assert not AccountMatcher().match(ExtractedFields(), [make_card()]).found


def test_normalize_name():
    assert normalize_name(" li\tsi ") == "LISI"
    assert normalize_name("") == ""
