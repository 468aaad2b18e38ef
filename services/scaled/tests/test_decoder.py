import pytest

from scaled.decoder import GRAMMARS, clean_line, decode, try_decode
from scaled.errors import DecodeRejected


def test_comma_triple_takes_weight_literally():
    r = decode("ST,GS,+0000230kg")
    assert r.weight_kg == 230
    assert r.stable is True
    assert r.unit == "kg"


def test_comma_triple_unstable_and_case_insensitive():
    r = decode("us,gs,+0001500KG")
    assert r.weight_kg == 1500
    assert r.stable is False


def test_tagged_legacy_divides_by_ten():
    stable = decode("SGS+0000900")
    unstable = decode("USGS+0000900")
    assert (stable.weight_kg, stable.stable) == (90.0, True)
    assert (unstable.weight_kg, unstable.stable) == (90.0, False)


def test_bare_tag_divides_by_ten():
    r = decode("ST+0000070")
    assert r.weight_kg == 7.0
    assert r.stable is True


def test_negative_weight_rejected_not_clamped():
    with pytest.raises(DecodeRejected) as exc:
        decode("US-0000070")
    assert exc.value.weight == -7.0
    assert try_decode("US-0000070") is None


def test_out_of_range_rejected():
    with pytest.raises(DecodeRejected, match="out of range"):
        decode("ST,GS,+0070000kg")


def test_upper_bound_inclusive():
    assert decode("ST,GS,+0060000kg").weight_kg == 60000


def test_grammar_order_is_fixed():
    assert [g.name for g in GRAMMARS] == ["comma_triple", "tagged_legacy", "bare_tag_legacy"]


def test_clean_line_strips_garbage():
    assert clean_line("\x02ST,GS,+0000230kg\r") == "ST,GS,+0000230kg"
    assert clean_line("\xffST,GS,�+0000230kg#") == "ST,GS,+0000230kg"


def test_garbage_around_valid_line_still_decodes():
    r = decode("\x00\x02ST,GS,+0000230kg\x03\r")
    assert r.weight_kg == 230


@pytest.mark.parametrize("line", ["", "S", "\x00\x01\x7f", "hello world", "ST,GS,+12.5kg", "SGS+123"])
def test_unparseable_lines_rejected(line):
    assert try_decode(line) is None


@pytest.mark.parametrize("line", ["ST" + "1" * 5000, "ST,GS," + "9" * 5000 + "kg"])
def test_huge_digit_run_is_rejected(line):
    with pytest.raises(DecodeRejected):
        decode(line)
    assert try_decode(line) is None
