"""統計レポートの出力.

取り込み統計（カテゴリ → コード集合）を TSV として出力します。
"""

from __future__ import annotations

from pathlib import Path

import polars as pl

from .stats import MergeStatistics

REPORT_FILENAME = "import_stats.tsv"


def stats_to_frame(stats: MergeStatistics) -> pl.DataFrame:
    """統計を category / count / codes の DataFrame にする（codes はカンマ区切り、昇順）."""
    categories = stats.as_dict()
    return pl.DataFrame(
        {
            "category": list(categories),
            "count": [len(codes) for codes in categories.values()],
            "codes": [",".join(sorted(codes)) for codes in categories.values()],
        },
        schema={"category": pl.Utf8, "count": pl.Int64, "codes": pl.Utf8},
    )


def export_stats_report(stats: MergeStatistics, output_dir: Path | str) -> Path:
    """統計レポートを TSV ファイルとして出力する.

    Args:
        stats: import_csv_file() の戻り値
        output_dir: 出力ディレクトリ

    Returns:
        出力した import_stats.tsv のパス
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report_path = output_dir / REPORT_FILENAME
    stats_to_frame(stats).write_csv(report_path, separator="\t")
    return report_path
