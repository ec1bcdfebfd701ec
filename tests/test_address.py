"""Tests for the address resolver."""

import pytest

from sheetcore.engine.address import AddressResolver, InvalidAddress, InvalidRange, parse_address
from sheetcore.engine.models import Address


@pytest.fixture
def resolver() -> AddressResolver:
    return AddressResolver(max_cells=1000)


class TestColumnLetters:
    """Tests for column letter conversion."""

    @pytest.mark.parametrize(
        "letters,index",
        [("A", 1), ("Z", 26), ("AA", 27), ("AZ", 52), ("BA", 53), ("ZZ", 702), ("AAA", 703)],
    )
    def test_known_values(self, resolver: AddressResolver, letters: str, index: int) -> None:
        """Test well-known letter/index pairs in both directions."""
        assert resolver.column_to_index(letters) == index
        assert resolver.index_to_column(index) == letters

    def test_round_trip(self, resolver: AddressResolver) -> None:
        """Test that index -> letters -> index is the identity."""
        for index in range(1, 2000):
            assert resolver.column_to_index(resolver.index_to_column(index)) == index

    def test_lowercase_letters(self, resolver: AddressResolver) -> None:
        """Test that lowercase letters are accepted."""
        assert resolver.column_to_index("ab") == 28

    def test_invalid_index(self, resolver: AddressResolver) -> None:
        """Test that index 0 is rejected."""
        with pytest.raises(InvalidAddress):
            resolver.index_to_column(0)


class TestCellLabels:
    """Tests for parsing single cell labels."""

    def test_parse(self) -> None:
        """Test parsing a plain label."""
        assert parse_address("B12") == Address(12, 2)

    def test_parse_absolute(self) -> None:
        """Test that $ markers are ignored."""
        assert parse_address("$C$3") == Address(3, 3)

    def test_label(self, resolver: AddressResolver) -> None:
        """Test formatting an address back to a label."""
        assert resolver.to_label(Address(12, 28)) == "AB12"
        assert resolver.to_address("AB", 12) == Address(12, 28)

    @pytest.mark.parametrize("label", ["A0", "1A", "ABCD1", "", "A-1", "A1:B2"])
    def test_invalid_labels(self, label: str) -> None:
        """Test that malformed labels raise InvalidAddress."""
        with pytest.raises(InvalidAddress):
            parse_address(label)


class TestRangeExpansion:
    """Tests for range expansion."""

    def test_row_major_order(self, resolver: AddressResolver) -> None:
        """Test that ranges expand row by row, left to right."""
        labels = [a.label for a in resolver.expand_range("A1:B2")]
        assert labels == ["A1", "B1", "A2", "B2"]

    def test_reversed_range_is_normalized(self, resolver: AddressResolver) -> None:
        """Test that B2:A1 expands like A1:B2."""
        assert resolver.expand_range("B2:A1") == resolver.expand_range("A1:B2")

    def test_single_cell_range(self, resolver: AddressResolver) -> None:
        """Test a one-cell range."""
        assert [a.label for a in resolver.expand_range("C3:C3")] == ["C3"]

    def test_column_range_uses_max_row(self, resolver: AddressResolver) -> None:
        """Test that A:B expands down to the given max row."""
        start, end = resolver.bounds("A:B", max_row=3)
        assert (start.label, end.label) == ("A1", "B3")
        assert len(resolver.expand_range("A:B", max_row=3)) == 6

    def test_column_range_requires_max_row(self, resolver: AddressResolver) -> None:
        """Test that a column range without max_row is rejected."""
        with pytest.raises(InvalidRange):
            resolver.bounds("A:B")

    def test_invalid_range(self, resolver: AddressResolver) -> None:
        """Test that garbage raises InvalidRange."""
        with pytest.raises(InvalidRange):
            resolver.expand_range("A1-B2")

    def test_truncation_is_reported(self) -> None:
        """Test that oversized ranges are truncated with the true size reported."""
        expansion = AddressResolver(max_cells=5).expand_range_checked("A1:C3")

        assert len(expansion.addresses) == 5
        assert expansion.total == 9
        assert expansion.truncated is True
        assert expansion.limit == 5

    def test_no_truncation_within_limit(self, resolver: AddressResolver) -> None:
        """Test that small ranges are not flagged as truncated."""
        expansion = resolver.expand_range_checked("A1:C3")

        assert expansion.total == 9
        assert expansion.truncated is False

    def test_is_range(self, resolver: AddressResolver) -> None:
        """Test range detection."""
        assert resolver.is_range("A1:B2")
        assert resolver.is_range("A:C")
        assert not resolver.is_range("A1")
