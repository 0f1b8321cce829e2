"""Unit tests for script-mix analysis."""

from payverify.ocr.language import Script, analyze_script, khmer_fragments


class TestAnalyzeScript:
    """Test analyze_script classification."""

    def test_english_receipt(self) -> None:
        """Latin text with banking vocabulary is English."""
        analysis = analyze_script("Transfer successful to account SOK DARA")

        assert analysis.primary == Script.ENGLISH
        assert analysis.confidence == 1.0
        assert "transfer" in analysis.english_terms
        assert analysis.has_khmer is False
        assert analysis.khmer_dominant is False

    def test_khmer_receipt(self) -> None:
        """Khmer text with banking vocabulary is Khmer-dominant."""
        analysis = analyze_script("ផ្ទេរប្រាក់ ជោគជ័យ គណនី")

        assert analysis.primary == Script.KHMER
        assert analysis.khmer_dominant is True
        assert analysis.khmer_ratio == 1.0
        assert "គណនី" in analysis.khmer_terms

    def test_balanced_mix(self) -> None:
        """Equal scores on both sides are MIXED."""
        analysis = analyze_script("abcd កខ ..")

        assert analysis.primary == Script.MIXED
        assert analysis.has_khmer is True
        assert analysis.khmer_dominant is False

    def test_digits_only_is_unknown(self) -> None:
        """Digits alone do not establish a script."""
        analysis = analyze_script("12345")

        assert analysis.primary == Script.UNKNOWN
        assert analysis.confidence == 0.1

    def test_empty(self) -> None:
        """Empty and whitespace-only text is UNKNOWN with zero confidence."""
        assert analyze_script("").primary == Script.UNKNOWN
        assert analyze_script(None).confidence == 0.0
        assert analyze_script(" \n\t ").khmer_ratio == 0.0


class TestKhmerFragments:
    """Test khmer_fragments."""

    def test_returns_khmer_lines(self) -> None:
        """Only lines containing Khmer are kept, stripped."""
        text = "ABA Bank\n  ផ្ទេរប្រាក់  \nAmount: 5,000 KHR\nអ្នកទទួល SOK DARA"

        assert khmer_fragments(text) == ["ផ្ទេរប្រាក់", "អ្នកទទួល SOK DARA"]

    def test_no_khmer(self) -> None:
        """Latin-only text has no fragments."""
        assert khmer_fragments("ABA Bank\nAmount") == []
        assert khmer_fragments(None) == []
