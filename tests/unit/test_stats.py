"""Unit tests for statistics categories and provenance."""

from collections.abc import Callable
from unittest.mock import patch

from product_csv_import.core.config import ImportContext
from product_csv_import.core.models import RowState
from product_csv_import.core.stats import (
    STAT_CATEGORIES,
    MergeStatistics,
    build_provenance,
    check_consistency,
    derive_row_categories,
)


def _state(*flags: str, modified: int = 0) -> RowState:
    state = RowState(row_number=3, code="8000000000001", modified=modified)
    for flag in flags:
        state.flag(flag)
    return state


class TestDeriveRowCategories:
    """derive_row_categories関数のテスト."""

    def test_info_added_is_data_update(self) -> None:
        """info_addedはデータ更新として扱われることを確認."""
        state = _state("products_info_added", "products_with_info", modified=1)

        derive_row_categories(state)

        assert state.has("products_info_updated")
        assert state.has("products_nutrition_not_updated")
        assert state.has("products_data_updated")
        assert state.has("products_with_data")
        assert state.has("products_without_nutrition")
        assert state.has("products_without_ingredients")

    def test_nothing_changed(self) -> None:
        """変更が無い場合のカテゴリを確認."""
        state = _state()

        derive_row_categories(state)

        assert state.has("products_info_not_updated")
        assert state.has("products_data_not_updated")
        assert state.has("products_without_data")
        assert not state.has("products_data_updated")

    def test_nutrition_data_per_alone_is_data_update(self) -> None:
        """nutrition_data_perだけの変更もデータ更新になることを確認."""
        state = _state("products_nutrition_data_per_updated", "products_with_nutrition", modified=1)

        derive_row_categories(state)

        assert state.has("products_data_updated")
        assert state.has("products_nutrition_not_updated")
        assert state.has("products_with_data")


class TestCheckConsistency:
    """check_consistency関数のテスト."""

    def test_consistent_rows(self) -> None:
        """整合した行はTrueになることを確認."""
        assert check_consistency(_state("products_data_updated", modified=2))
        assert check_consistency(_state("products_data_not_updated"))

    def test_modified_without_data_updated_is_logged(self) -> None:
        """変更ありでdata_updatedが無い場合はエラーログになることを確認."""
        with patch("product_csv_import.core.stats.logger.error") as mock_error:
            assert not check_consistency(_state("products_data_not_updated", modified=1))
        mock_error.assert_called_once()

    def test_data_updated_without_modification_is_logged(self) -> None:
        """変更なしでdata_updatedがある場合はエラーログになることを確認."""
        with patch("product_csv_import.core.stats.logger.error") as mock_error:
            assert not check_consistency(_state("products_data_updated"))
        mock_error.assert_called_once()


class TestMergeStatistics:
    """MergeStatisticsのテスト."""

    def test_all_categories_start_empty(self) -> None:
        """全カテゴリが空で始まることを確認."""
        stats = MergeStatistics()
        for name in STAT_CATEGORIES:
            assert name in stats
            assert stats[name] == set()

    def test_record_row(self) -> None:
        """行のフラグと差分フィールドが反映されることを確認."""
        stats = MergeStatistics()
        state = _state("products_created", "products_info_added")
        state.differing_fields.extend(["quantity", "brands"])

        stats.record_row(state)
        stats.record_row(_state("products_created"))

        assert stats["products_created"] == {"8000000000001"}
        assert stats.has("products_info_added", "8000000000001")
        assert stats.differing_fields == {"quantity": 1, "brands": 1}

    def test_record_image_flags(self) -> None:
        """画像のカテゴリだけが反映され差分フィールドは二重に数えないことを確認."""
        stats = MergeStatistics()
        state = _state("products_created")
        state.differing_fields.append("quantity")
        stats.record_row(state)

        state.flag("products_with_images")
        state.flag("products_images_added")
        stats.record_image_flags(state)

        assert stats["products_with_images"] == {"8000000000001"}
        assert stats["products_images_added"] == {"8000000000001"}
        assert stats["products_without_images"] == set()
        assert stats.differing_fields == {"quantity": 1}

    def test_counters(self) -> None:
        """件数カウンタを確認."""
        stats = MergeStatistics()
        stats.count("rows")
        stats.count("rows")
        stats.count("skipped_not_existing")

        assert stats.counters["rows"] == 2
        assert stats.counters["skipped_not_existing"] == 1
        assert stats.counters["errors"] == 0

    def test_as_dict_is_a_copy(self) -> None:
        """as_dictがコピーを返すことを確認."""
        stats = MergeStatistics()
        stats.add("products_created", "1")

        snapshot = stats.as_dict()
        snapshot["products_created"].add("2")

        assert stats["products_created"] == {"1"}


class TestBuildProvenance:
    """build_provenance関数のテスト."""

    def test_record_from_configured_source(self, context: ImportContext) -> None:
        """設定のsourceから来歴が作られることを確認."""
        state = _state()
        state.modified_fields.extend(["quantity", "categories"])
        state.image_ids.append(4)

        record = build_provenance(context, {}, state)

        assert record is not None
        assert record.source_id == "acme"
        assert record.source_url == "https://acme.example/"
        assert record.imported_t == 1_700_000_000
        assert record.fields == ["quantity", "categories"]
        assert record.images == [4]
        assert record.licence == "ODbL"

    def test_row_source_url_overrides(self, context: ImportContext) -> None:
        """行のsource_urlが優先されることを確認."""
        record = build_provenance(context, {"source_url": "https://acme.example/p/1"}, _state())

        assert record is not None
        assert record.source_url == "https://acme.example/p/1"

    def test_no_source(self, make_context: Callable[..., ImportContext]) -> None:
        """no_sourceでは来歴を作らないことを確認."""
        context = make_context(no_source=True, source=None)

        assert build_provenance(context, {}, _state()) is None
