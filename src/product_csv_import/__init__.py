"""タブ区切りの商品データを既存のプロダクトデータベースにマージする取り込みエンジン."""

from product_csv_import.core.config import ImportContext, ImportOptions, SourceAttribution, load_import_options
from product_csv_import.core.database import InMemoryProductStore, SqliteProductStore
from product_csv_import.core.report import export_stats_report
from product_csv_import.core.stats import MergeStatistics
from product_csv_import.importer import import_categories_from_public_store, import_csv_file, import_rows

__version__ = "0.1.0"

__all__ = [
    "ImportContext",
    "ImportOptions",
    "SourceAttribution",
    "load_import_options",
    "InMemoryProductStore",
    "SqliteProductStore",
    "MergeStatistics",
    "export_stats_report",
    "import_csv_file",
    "import_rows",
    "import_categories_from_public_store",
]
