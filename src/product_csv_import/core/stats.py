"""統計カテゴリと帰属情報の記録.

統計は「カテゴリ名 → コード集合」の辞書。1つのコードが複数カテゴリに属してよく、
一部のカテゴリは他のカテゴリから導出される（info_updated = info_added OR info_changed など）。

不変条件:
    行の変更カウンタが 0 でない ⇔ その行は products_data_updated に入る
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping

from loguru import logger

from .config import ImportContext
from .models import ProvenanceRecord, RowState
from .normalize import is_blank

STAT_CATEGORIES = (
    "products_in_file",
    "products_already_existing",
    "products_created",
    "products_updated",
    "products_data_updated",
    "products_data_not_updated",
    "products_info_added",
    "products_info_changed",
    "products_info_updated",
    "products_info_not_updated",
    "products_nutrition_added",
    "products_nutrition_changed",
    "products_nutrition_updated",
    "products_nutrition_not_updated",
    "products_nutrition_data_per_updated",
    "products_images_added",
    "products_with_images",
    "products_without_images",
    "products_with_images_even_if_no_data",
    "products_with_data",
    "products_without_data",
    "products_with_info",
    "products_without_info",
    "products_with_ingredients",
    "products_without_ingredients",
    "products_with_nutrition",
    "products_without_nutrition",
)

# 画像の関連付けで立つカテゴリ（マージ結果の記録後に反映する）
IMAGE_CATEGORIES = ("products_images_added", "products_with_images", "products_without_images")


class MergeStatistics:
    """取り込み1回分の統計.

    Attributes:
        counters: 行単位の件数（rows, skipped_<reason>, errors など）
        differing_fields: 既存値と異なる値で上書きしたフィールドごとの件数
    """

    def __init__(self) -> None:
        self._categories: dict[str, set[str]] = {name: set() for name in STAT_CATEGORIES}
        self.counters: Counter[str] = Counter()
        self.differing_fields: Counter[str] = Counter()

    def add(self, category: str, code: str) -> None:
        self._categories.setdefault(category, set()).add(code)

    def has(self, category: str, code: str) -> bool:
        return code in self._categories.get(category, set())

    def __getitem__(self, category: str) -> set[str]:
        return self._categories[category]

    def __contains__(self, category: object) -> bool:
        return category in self._categories

    def count(self, key: str, n: int = 1) -> None:
        self.counters[key] += n

    def record_row(self, state: RowState) -> None:
        """行の統計フラグを全体の統計に反映する."""
        for category in state.flags:
            self.add(category, state.code)
        self.differing_fields.update(state.differing_fields)

    def record_image_flags(self, state: RowState) -> None:
        """画像の関連付けで立った統計フラグだけを反映する."""
        for category in IMAGE_CATEGORIES:
            if state.has(category):
                self.add(category, state.code)

    def as_dict(self) -> dict[str, set[str]]:
        return {name: set(codes) for name, codes in self._categories.items()}


def derive_row_categories(state: RowState) -> None:
    """フィールド/タグ/栄養素マージ後に、導出カテゴリを行の状態に設定する."""
    info_updated = state.has("products_info_added") or state.has("products_info_changed")
    state.flag("products_info_updated" if info_updated else "products_info_not_updated")

    nutrition_updated = (
        state.has("products_nutrition_added")
        or state.has("products_nutrition_changed")
        or state.has("products_nutrition_updated")
    )
    state.flag("products_nutrition_updated" if nutrition_updated else "products_nutrition_not_updated")

    data_updated = info_updated or nutrition_updated or state.has("products_nutrition_data_per_updated")
    state.flag("products_data_updated" if data_updated else "products_data_not_updated")

    for kind in ("info", "ingredients", "nutrition"):
        if not state.has(f"products_with_{kind}"):
            state.flag(f"products_without_{kind}")

    if state.has("products_with_info") or state.has("products_with_nutrition"):
        state.flag("products_with_data")
    else:
        state.flag("products_without_data")


def check_consistency(state: RowState) -> bool:
    """変更カウンタと products_data_updated の整合性を確認する."""
    data_updated = state.has("products_data_updated")
    if state.modified and not data_updated:
        logger.error(f"Row {state.row_number} ({state.code}): modified but not products_data_updated")
        return False
    if not state.modified and data_updated:
        logger.error(f"Row {state.row_number} ({state.code}): not modified but products_data_updated")
        return False
    return True


def build_provenance(
    context: ImportContext,
    row: Mapping[str, str | None],
    state: RowState,
) -> ProvenanceRecord | None:
    """この行の帰属情報を作る（no_source の場合は None）.

    行に source_url があれば設定の URL より優先する。
    """
    options = context.options
    if options.no_source or options.source is None:
        return None

    source = options.source
    source_url = source.source_url
    row_url = row.get("source_url")
    if not is_blank(row_url):
        source_url = str(row_url)

    return ProvenanceRecord(
        source_id=source.source_id,
        source_name=source.source_name,
        source_url=source_url,
        imported_t=context.clock(),
        fields=list(state.modified_fields),
        images=list(state.image_ids),
        manufacturer=source.manufacturer,
        licence=source.licence,
        licence_url=source.licence_url,
    )


def log_summary(stats: MergeStatistics) -> None:
    """取り込み完了時のサマリーをログ出力する."""
    logger.info("Import done")
    for field, n in sorted(stats.differing_fields.items()):
        logger.info(f"field {field} - {n} differing values")

    counters = stats.counters
    logger.info(f"{counters['rows']} products")
    logger.info(f"{len(stats['products_created'])} new products")
    logger.info(f"{len(stats['products_already_existing'])} existing products")
    for key in sorted(k for k in counters if k.startswith("skipped_")):
        logger.info(f"{counters[key]} {key.replace('_', ' ')}")
    logger.info(f"{counters['errors']} rows with errors")
    if counters["image_errors"]:
        logger.warning(f"{counters['image_errors']} rows with image errors")
    logger.info(f"{sum(stats.differing_fields.values())} differing values")
    logger.info(f"{len(stats['products_nutrition_updated'])} products with edited nutrients")
    logger.info(f"{len(stats['products_data_updated'])} products with edited fields or nutrients")
    logger.info(f"{len(stats['products_updated'])} products updated")
