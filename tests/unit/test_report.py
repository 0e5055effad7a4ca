"""Unit tests for the statistics report."""

from pathlib import Path

import polars as pl

from product_csv_import.core.report import REPORT_FILENAME, export_stats_report, stats_to_frame
from product_csv_import.core.stats import STAT_CATEGORIES, MergeStatistics


def test_stats_to_frame() -> None:
    """統計がカテゴリごとの行になることを確認."""
    stats = MergeStatistics()
    stats.add("products_created", "2222222222222")
    stats.add("products_created", "1111111111116")

    df = stats_to_frame(stats)

    assert df.height == len(STAT_CATEGORIES)
    created = df.filter(pl.col("category") == "products_created").row(0, named=True)
    assert created == {"category": "products_created", "count": 2, "codes": "1111111111116,2222222222222"}


def test_export_stats_report(tmp_path: Path) -> None:
    """統計レポートがTSVで書き出されることを確認."""
    stats = MergeStatistics()
    stats.add("products_updated", "3017620422003")

    path = export_stats_report(stats, tmp_path / "out")

    assert path == tmp_path / "out" / REPORT_FILENAME
    df = pl.read_csv(path, separator="\t", infer_schema_length=0)
    updated = df.filter(pl.col("category") == "products_updated")
    assert updated["count"].to_list() == ["1"]
    assert updated["codes"].to_list() == ["3017620422003"]
