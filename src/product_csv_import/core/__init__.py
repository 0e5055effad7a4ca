"""商品データ取り込みのコア処理群.

- 正規化（コード、数量、栄養素の値と単位）
- マージ（フィールド、タグ集合、栄養表）
- 統計と帰属情報
- 画像の探索と関連付け
"""

from .merge import merge_fields
from .normalize import normalize_code, normalize_quantity
from .nutrients import merge_nutrients
from .stats import MergeStatistics
from .tags import merge_tag_field

__all__ = [
    "normalize_code",
    "normalize_quantity",
    "merge_fields",
    "merge_tag_field",
    "merge_nutrients",
    "MergeStatistics",
]
