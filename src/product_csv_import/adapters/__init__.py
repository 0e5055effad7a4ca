"""商品データ取り込み用の入力アダプタ群."""

from .base_adapter import REQUIRED_COLUMNS, BaseAdapter, ImportRow
from .tsv_adapter import TSV_Adapter

__all__ = [
    "BaseAdapter",
    "ImportRow",
    "TSV_Adapter",
    "REQUIRED_COLUMNS",
]
