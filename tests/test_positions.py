import pytest

from readsync.positions import (
    FixedPage, Flowing, NavigationTarget, WireProgress,
    decode_fixed, decode_flowing, encode, encode_fixed, encode_flowing,
    local_identifier, positions_equal, remote_identifier,
)
from readsync.xpointer import XCFI

from fakes import FailingTranslator

DOC = ("<html><head><title>T</title></head><body><div>"
       "<p>First para</p><p>Second <b>bold</b> tail text</p>"
       "</div></body></html>")


@pytest.mark.unit
class TestFixedLayout:

    def test_page_index_encodes_to_one_based_page(self):
        assert encode_fixed(FixedPage(5, 100)) == WireProgress("6", 0.06)

    def test_page_number_decodes_back(self):
        assert decode_fixed("6", 100) == FixedPage(5, 100)

    def test_zero_total_gives_zero_percentage(self):
        assert encode_fixed(FixedPage(3, 0)).percentage == 0

    def test_non_numeric_progress(self):
        assert decode_fixed("/body/DocFragment[1]") is None
        assert decode_fixed(None) is None


@pytest.mark.unit
class TestFlowing:

    def test_translates_cfi_to_xpointer(self):
        wire = encode_flowing(Flowing("epubcfi(/6/4!/4/2/2/1:5)", 0.3), XCFI(DOC, 1))
        assert wire == WireProgress("/body/DocFragment[2]/body/div/p[1]/text().5", 0.3)

    def test_translation_failure_sends_cfi(self):
        wire = encode_flowing(Flowing("epubcfi(/6/4!/4/2)", 0.3), FailingTranslator())
        assert wire == WireProgress("epubcfi(/6/4!/4/2)", 0.3)

    def test_no_translator_sends_cfi(self):
        assert encode_flowing(Flowing("epubcfi(/6/4!/4/2)", 0.3)).progress == "epubcfi(/6/4!/4/2)"

    def test_no_pointer(self):
        assert encode(Flowing(None, 0.5)) == WireProgress("", 0.5)

    def test_xpointer_decodes_to_cfi(self):
        target = decode_flowing("/body/DocFragment[2]/body/div/p[1]/text().5", 0.3, XCFI(DOC, 1))
        assert target == NavigationTarget(pointer="epubcfi(/6/4!/4/2/2/1:5)")

    def test_xpointer_failure_falls_back_to_fraction(self):
        target = decode_flowing("/body/DocFragment[2]/body/p", 0.42, FailingTranslator())
        assert target == NavigationTarget(fraction=0.42)

    def test_xpointer_without_translator_falls_back_to_fraction(self):
        assert decode_flowing("/body/DocFragment[2]/body/p", 0.42) == NavigationTarget(fraction=0.42)

    def test_cfi_is_used_directly(self):
        assert decode_flowing("epubcfi(/6/8!/4/2)", 0.5) == NavigationTarget(pointer="epubcfi(/6/8!/4/2)")

    def test_unknown_notation_uses_fraction(self):
        assert decode_flowing("B", 0.5) == NavigationTarget(fraction=0.5)

    def test_nothing_to_go_on(self):
        assert decode_flowing("B", None) is None


@pytest.mark.unit
class TestEquality:

    def test_equal_cfis(self):
        assert positions_equal("epubcfi(/6/4!/4/2)", "epubcfi(/6/4!/4/2)", 0.1, 0.9, 1e-4)

    def test_range_cfi_collapses_to_start(self):
        assert positions_equal("epubcfi(/6/4!/4/2,/2/1:0,/2/1:9)", "epubcfi(/6/4!/4/2/2/1:0)", 0.1, None, 1e-4)

    def test_different_cfis_fall_back_to_percentage(self):
        assert positions_equal("epubcfi(/6/4!/4/2)", "epubcfi(/6/4!/4/4)", 0.1, 0.10005, 1e-4)

    def test_percentage_within_tolerance(self):
        assert positions_equal("A", None, 0.10, 0.10005, 1e-4)

    def test_percentage_outside_tolerance(self):
        assert not positions_equal("A", None, 0.10, 0.1002, 1e-4)

    def test_missing_remote_percentage(self):
        assert not positions_equal("A", "B", 0.10, None, 1e-4)

    def test_identifiers(self):
        assert local_identifier(FixedPage(4, 10)) == "4"
        assert local_identifier(Flowing("epubcfi(/6/2!/4)", 0.1)) == "epubcfi(/6/2!/4)"
        assert remote_identifier("5", fixed_layout=True) == "4"
        assert remote_identifier("/body/DocFragment[1]", fixed_layout=False) is None
        assert remote_identifier("epubcfi(/6/2!/4)", fixed_layout=False) == "epubcfi(/6/2!/4)"
