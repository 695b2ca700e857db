"""Tests for keyword to tag resolution."""

from dicomgate.services.gateway.tags import keyword_for, resolve_tag


class TestResolveTag:
    def test_known_keyword(self) -> None:
        assert resolve_tag("PatientName") == "00100010"
        assert resolve_tag("StudyInstanceUID") == "0020000D"
        assert resolve_tag("SOPInstanceUID") == "00080018"

    def test_resolved_tag_is_uppercase_hex(self) -> None:
        assert resolve_tag("SeriesDescription") == "0008103E"

    def test_unknown_keyword(self) -> None:
        assert resolve_tag("NotADicomKeyword") is None

    def test_lookup_is_case_sensitive(self) -> None:
        assert resolve_tag("patientname") is None

    def test_non_keyword_query_params(self) -> None:
        assert resolve_tag("offset") is None
        assert resolve_tag("includefield") is None


class TestKeywordFor:
    def test_known_tag(self) -> None:
        assert keyword_for("00100010") == "PatientName"

    def test_invalid_tag(self) -> None:
        assert keyword_for("not-a-tag") is None
