"""Unit tests for normalize utilities."""

import pytest

from product_csv_import.core.normalize import (
    get_fileid,
    is_blank,
    is_valid_code,
    is_valid_language_code,
    normalize_code,
    normalize_nutrient_unit,
    normalize_nutrient_value_and_modifier,
    normalize_packager_codes,
    normalize_quantity,
    sanitize_cell,
    sanitize_row,
)


class TestSanitize:
    """セル整形のテスト."""

    def test_strip_markup_and_whitespace(self) -> None:
        """マークアップと前後の空白が除去されることを確認."""
        assert sanitize_cell("  <b>Choco</b> Bar ") == "Choco Bar"
        assert sanitize_cell("<br/>") == ""

    def test_none_is_kept(self) -> None:
        """Noneはそのまま返ることを確認."""
        assert sanitize_cell(None) is None

    def test_sanitize_row(self) -> None:
        """行の全セルが整形されることを確認."""
        row = sanitize_row({" code ": " 123 ", "lc": None})
        assert row == {"code": "123", "lc": None}

    def test_is_blank(self) -> None:
        """空値の判定を確認."""
        assert is_blank(None)
        assert is_blank("   ")
        assert not is_blank("0")


class TestNormalizeCode:
    """normalize_code関数のテスト."""

    def test_strip_non_digits(self) -> None:
        """数字以外が除去されることを確認."""
        assert normalize_code(" 3 017620 422003 ") == "3017620422003"

    def test_upc_gets_leading_zero(self) -> None:
        """先頭に0を付けると正しいEAN-13になる12桁コード."""
        assert normalize_code("036000291452") == "0036000291452"

    def test_invalid_upc_is_unchanged(self) -> None:
        """チェックディジットの合わないUPCはそのままであることを確認."""
        assert normalize_code("123456789013") == "123456789013"

    def test_long_code_loses_leading_zeros(self) -> None:
        """長いコードの先頭の0が除去されることを確認."""
        assert normalize_code("00003017620422003") == "3017620422003"

    def test_long_code_never_below_13_digits(self) -> None:
        """先頭の0を除去しても13桁未満にならないことを確認."""
        assert normalize_code("00000000123456") == "0000000123456"

    def test_none_and_empty(self) -> None:
        """Noneと数字の無い文字列は空文字になることを確認."""
        assert normalize_code(None) == ""
        assert normalize_code("abc") == ""

    @pytest.mark.parametrize(
        "code",
        ["036000291452", "00003017620422003", "8000000000001", "12345678", "00000000123456"],
    )
    def test_idempotent(self, code: str) -> None:
        """2回正規化しても結果が変わらないことを確認."""
        once = normalize_code(code)
        assert normalize_code(once) == once

    def test_is_valid_code(self) -> None:
        """8桁以上の数字だけが有効なことを確認."""
        assert is_valid_code("12345678")
        assert not is_valid_code("1234567")
        assert not is_valid_code("")

    def test_is_valid_language_code(self) -> None:
        """2文字の小文字だけが有効な言語コードであることを確認."""
        assert is_valid_language_code("en")
        assert not is_valid_language_code("EN")
        assert not is_valid_language_code("eng")
        assert not is_valid_language_code(None)


class TestGetFileid:
    """get_fileid関数のテスト."""

    def test_accents_removed(self) -> None:
        """アクセントが除去されることを確認."""
        assert get_fileid("Crème Fraîche") == "creme-fraiche"

    def test_separators_folded(self) -> None:
        """区切り文字がハイフン1つにまとまることを確認."""
        assert get_fileid("  Coca_Cola ") == "coca-cola"
        assert get_fileid("Fair Trade / Bio") == "fair-trade-bio"


class TestNormalizeQuantity:
    """normalize_quantity関数のテスト."""

    def test_grams(self) -> None:
        """数値と単位の間に空白が入ることを確認."""
        assert normalize_quantity("100g") == "100 g"
        assert normalize_quantity("250 gr") == "250 g"

    def test_canonical_is_unchanged(self) -> None:
        """正規化済みの値は変わらないことを確認."""
        assert normalize_quantity("100 g") == "100 g"
        assert normalize_quantity(normalize_quantity("6x90g")) == "6 x 90 g"

    def test_multipack(self) -> None:
        """まとめ売りの表記が正規化されることを確認."""
        assert normalize_quantity("6x90g") == "6 x 90 g"

    def test_trailing_decimal_zero(self) -> None:
        """小数点以下の0が省かれることを確認."""
        assert normalize_quantity("28.0 grammes") == "28 g"

    def test_volume_and_weight_units(self) -> None:
        """体積と重さの単位名が略記になることを確認."""
        assert normalize_quantity("1 Litre") == "1 l"
        assert normalize_quantity("500 millilitres") == "500 ml"
        assert normalize_quantity("2 kilogrammes") == "2 kg"

    def test_words_are_not_broken(self) -> None:
        """単位で始まる単語は変換しないことを確認."""
        assert normalize_quantity("1 gallon") == "1 gallon"
        assert normalize_quantity("1.5 l") == "1.5 l"


class TestPackagerCodes:
    """normalize_packager_codes関数のテスト."""

    def test_french_health_mark(self) -> None:
        """フランスの衛生マークが正規化されることを確認."""
        assert normalize_packager_codes("fr 56-068-003 ce, emb56068") == "FR 56.068.003 EC, EMB 56068"

    def test_unknown_code_is_uppercased(self) -> None:
        """未知の形式は大文字になることを確認."""
        assert normalize_packager_codes("de by 123") == "DE BY 123"


class TestNutrientValue:
    """栄養素の値と単位の正規化のテスト."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("< 0,5", ("0.5", "<")),
            ("<= 3", ("3", "≤")),
            ("~ 5", ("5", "~")),
            ("traces", ("0", "~")),
            ("nan", ("", None)),
            ("12.3", ("12.3", None)),
            ("0", ("0", None)),
        ],
    )
    def test_value_and_modifier(self, raw: str, expected: tuple[str, str | None]) -> None:
        """比較記号が値から分離されることを確認."""
        assert normalize_nutrient_value_and_modifier(raw) == expected

    def test_units(self) -> None:
        """単位の表記揺れが正規化されることを確認."""
        assert normalize_nutrient_unit("mcg") == "µg"
        assert normalize_nutrient_unit("KJ") == "kJ"
        assert normalize_nutrient_unit("oz") == "oz"
        assert normalize_nutrient_unit("") is None
        assert normalize_nutrient_unit(None) is None
