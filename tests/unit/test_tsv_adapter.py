"""Unit tests for TSV_Adapter."""

from pathlib import Path

import pytest

from product_csv_import.adapters.tsv_adapter import TSV_Adapter


class TestTSVAdapter:
    """TSV_Adapterのテスト."""

    def test_read_all_columns_as_strings(self, tmp_path: Path) -> None:
        """全列が文字列として読まれることを確認."""
        tsv = tmp_path / "products.tsv"
        tsv.write_text(
            "code\tproduct_name_en\tquantity\tsalt_value\n0036000291452\tChoco Bar\t\t1.50\n",
            encoding="utf-8",
        )

        rows = list(TSV_Adapter(tsv).rows())

        assert rows == [
            {"code": "0036000291452", "product_name_en": "Choco Bar", "quantity": None, "salt_value": "1.50"}
        ]

    def test_header_repair(self, tmp_path: Path) -> None:
        """ヘッダの前後の空白が除去されることを確認."""
        tsv = tmp_path / "products.tsv"
        tsv.write_text(" code \t brands\n123\tACME\n", encoding="utf-8")

        df = TSV_Adapter(tsv).read()

        assert df.columns == ["code", "brands"]

    def test_quotes_are_literal(self, tmp_path: Path) -> None:
        """引用符がそのまま残ることを確認."""
        tsv = tmp_path / "products.tsv"
        tsv.write_text('code\tproduct_name_en\n123\t"Big" Bar\n', encoding="utf-8")

        rows = list(TSV_Adapter(tsv).rows())

        assert rows[0]["product_name_en"] == '"Big" Bar'

    def test_missing_code_column(self, tmp_path: Path) -> None:
        """code列が無い場合はValueErrorになることを確認."""
        tsv = tmp_path / "products.tsv"
        tsv.write_text("ean\tbrands\n123\tACME\n", encoding="utf-8")

        with pytest.raises(ValueError, match="required columns"):
            list(TSV_Adapter(tsv).rows())

    def test_missing_file(self, tmp_path: Path) -> None:
        """存在しないファイルはFileNotFoundErrorになることを確認."""
        with pytest.raises(FileNotFoundError):
            TSV_Adapter(tmp_path / "missing.tsv")
