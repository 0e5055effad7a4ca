"""フィールドレジストリと入力カラムの分類.

取り込みファイルのヘッダ行から、マージ対象フィールドの順序付きリスト
（スカラー / 言語別 / タグ集合 / 栄養素）を一度だけ構築するためのモジュール。

カラム名は以下のいずれかの系統に分類される:
- `code` / `lc` などの基本フィールド
- `<field>_<lc>` の言語別フィールド
- `<field>:<tag>` のタグ真偽サブフィールド
- `<field>_if_not_existing` のフォールバック
- `<nid>_value` / `<nid>_unit` などの栄養素カラム
- `image_<slot>_file` / `image_<slot>_url` などの画像カラム
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

PRODUCT_FIELDS = (
    "quantity",
    "packaging",
    "brands",
    "categories",
    "labels",
    "origins",
    "manufacturing_places",
    "emb_codes",
    "link",
    "expiration_date",
    "purchase_places",
    "stores",
    "countries",
)

PRODUCT_OTHER_FIELDS = (
    "producer_version_id",
    "net_weight_value",
    "net_weight_unit",
    "drained_weight_value",
    "drained_weight_unit",
    "volume_value",
    "volume_unit",
    "other_information",
    "conservation_conditions",
    "recycling_instructions_to_recycle",
    "recycling_instructions_to_discard",
    "nutrition_grade_fr_producer",
    "recipe_idea",
    "customer_service",
    "preparation",
    "warning",
)

# 言語別に値を持つフィールド（候補リストには `<field>_<lc>` として展開される）
LANGUAGE_FIELDS = frozenset(
    {
        "product_name",
        "generic_name",
        "ingredients_text",
        "other_information",
        "conservation_conditions",
        "recycling_instructions_to_recycle",
        "recycling_instructions_to_discard",
        "recipe_idea",
        "customer_service",
        "preparation",
        "warning",
    }
)

# カンマ区切りのタグ集合として扱うフィールド
TAGS_FIELDS = frozenset(
    {
        "packaging",
        "brands",
        "categories",
        "labels",
        "origins",
        "manufacturing_places",
        "emb_codes",
        "allergens",
        "traces",
        "purchase_places",
        "stores",
        "countries",
        "data_sources",
    }
)

# タクソノミで tag id を解決するフィールド（それ以外は get_fileid で畳み込む）
TAXONOMY_FIELDS = frozenset({"categories", "labels", "origins", "allergens", "traces", "countries"})

# 栄養表（"#" はコメント、先頭の "!" / "-" と末尾の "-" は表示用の印）
NUTRIENT_TABLE = (
    "!energy-kj",
    "!energy-kcal",
    "!energy-",
    "-energy-from-fat-",
    "!fat",
    "-saturated-fat",
    "--butyric-acid-",
    "--caproic-acid-",
    "--caprylic-acid-",
    "--capric-acid-",
    "--lauric-acid-",
    "--myristic-acid-",
    "--palmitic-acid-",
    "--stearic-acid-",
    "-monounsaturated-fat-",
    "-polyunsaturated-fat-",
    "-omega-3-fat-",
    "-omega-6-fat-",
    "-omega-9-fat-",
    "-trans-fat-",
    "cholesterol-",
    "!carbohydrates",
    "-sugars",
    "--sucrose-",
    "--glucose-",
    "--fructose-",
    "--lactose-",
    "--maltose-",
    "-starch-",
    "-polyols-",
    "fiber",
    "!proteins",
    "-casein-",
    "-serum-proteins-",
    "salt",
    "sodium",
    "alcohol",
    "#vitamins",
    "vitamin-a-",
    "vitamin-d-",
    "vitamin-e-",
    "vitamin-k-",
    "vitamin-c-",
    "vitamin-b1-",
    "vitamin-b2-",
    "vitamin-pp-",
    "vitamin-b6-",
    "vitamin-b9-",
    "folates-",
    "vitamin-b12-",
    "biotin-",
    "pantothenic-acid-",
    "#minerals",
    "silica-",
    "bicarbonate-",
    "potassium-",
    "chloride-",
    "calcium-",
    "phosphorus-",
    "iron-",
    "magnesium-",
    "zinc-",
    "copper-",
    "manganese-",
    "fluoride-",
    "selenium-",
    "chromium-",
    "molybdenum-",
    "iodine-",
    "caffeine-",
    "taurine-",
    "ph-",
    "fruits-vegetables-nuts-",
    "fruits-vegetables-nuts-estimate-",
    "collagen-meat-protein-ratio-",
    "cocoa-",
    "carbon-footprint",
    "glycemic-index-",
)

PRODUCER_NUTRITION_SCORE = "nutrition-score-fr-producer"

NUTRIENT_UNIT_TOKENS = ("kj", "kcal", "kg", "g", "mg", "mcg", "l", "dl", "cl", "ml")

IMAGE_SLOTS = ("front", "ingredients", "nutrition", "other")
SELECTABLE_IMAGE_SLOTS = frozenset({"front", "ingredients", "nutrition"})

_NUTRIENT_MARKERS = re.compile(r"^[-!]+|-$")
_LANGUAGE_SUFFIX = re.compile(r"^(.+)_([a-z]{2})(?:_if_not_existing)?$")
_IMAGE_COLUMN = re.compile(r"^image_(front|ingredients|nutrition|other)(?:_|$)")


class FieldKind(str, Enum):
    """フィールドの種類."""

    SCALAR = "scalar"
    LANGUAGE = "language"  # 言語別スカラー（`<field>_<lc>`）
    TAGS = "tags"  # カンマ区切りタグ集合
    NUTRIENT = "nutrient"


class ColumnFamily(str, Enum):
    """入力カラムの系統."""

    FIELD = "field"
    LANGUAGE_FIELD = "language_field"
    TAG_SUBFIELD = "tag_subfield"
    FALLBACK = "fallback"
    NUTRIENT = "nutrient"
    IMAGE = "image"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    kind: FieldKind
    base: str
    lc: str | None = None
    taxonomy: bool = False

    @property
    def is_tags(self) -> bool:
        return self.kind == FieldKind.TAGS


@dataclass(frozen=True)
class FieldSchema:
    """1バッチ分のマージ対象フィールド定義.

    Attributes:
        fields: マージ順に並んだフィールド記述子
        languages: ヘッダから検出した言語コード（ソート済み）
        nutrients: 栄養素 id（コメント除外・印除去済み、生産者スコアを末尾に含む）
        unknown_columns: どの系統にも属さないカラム（取り込まれない）
    """

    fields: tuple[FieldDescriptor, ...]
    languages: tuple[str, ...]
    nutrients: tuple[str, ...]
    unknown_columns: tuple[str, ...] = field(default=())

    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


def core_field_names(extra_fields: Iterable[str] = ()) -> list[str]:
    """候補フィールドの基本リスト（言語展開前、重複除去済み）を返す."""
    names = [
        "owner",
        "lc",
        "product_name",
        "generic_name",
        *PRODUCT_FIELDS,
        *PRODUCT_OTHER_FIELDS,
        *extra_fields,
        "obsolete",
        "obsolete_since_date",
        "no_nutrition_data",
        "nutrition_data_per",
        "nutrition_data_prepared_per",
        "serving_size",
        "allergens",
        "traces",
        "ingredients_text",
        "lang",
        "data_sources",
        "imports",
    ]
    return list(dict.fromkeys(names))


def nutrient_ids() -> tuple[str, ...]:
    """栄養表から栄養素 id の順序付きリストを作る（"#" コメントは除外）."""
    ids: list[str] = []
    for entry in (*NUTRIENT_TABLE, PRODUCER_NUTRITION_SCORE):
        if entry.startswith("#"):
            continue
        ids.append(_NUTRIENT_MARKERS.sub("", entry))
    return tuple(ids)


def _nutrient_column_pattern(ids: Iterable[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(nid) for nid in sorted(ids, key=len, reverse=True))
    return re.compile(rf"^(?:{alternation})(?:_100g)?(?:_prepared)?_(?:value|unit)(?:_in_[a-z]+)?$")


_NUTRIENT_COLUMN = _nutrient_column_pattern(nutrient_ids())


def classify_column(column: str, known_fields: Iterable[str] = ()) -> ColumnFamily:
    """カラム名の系統を判定する.

    Args:
        column: カラム名
        known_fields: 基本フィールド名（core_field_names() の結果）

    Returns:
        判定した系統
    """
    known = set(known_fields) or set(core_field_names())

    if _IMAGE_COLUMN.match(column):
        return ColumnFamily.IMAGE

    if _NUTRIENT_COLUMN.match(column):
        return ColumnFamily.NUTRIENT

    if ":" in column:
        base = column.split(":", 1)[0]
        if base in TAGS_FIELDS:
            return ColumnFamily.TAG_SUBFIELD
        return ColumnFamily.UNKNOWN

    m = _LANGUAGE_SUFFIX.match(column)
    if m and m.group(1) in LANGUAGE_FIELDS:
        return ColumnFamily.LANGUAGE_FIELD

    if column.endswith("_if_not_existing") and column[: -len("_if_not_existing")] in known:
        return ColumnFamily.FALLBACK

    if column in known or column in {"code", "source_url", "comment"}:
        return ColumnFamily.FIELD

    return ColumnFamily.UNKNOWN


def discover_languages(columns: Iterable[str]) -> tuple[str, ...]:
    """`<language_field>_<lc>` 形式のカラムから言語コードを検出する."""
    langs: set[str] = set()
    for column in columns:
        m = _LANGUAGE_SUFFIX.match(column)
        if m and m.group(1) in LANGUAGE_FIELDS:
            langs.add(m.group(2))
    return tuple(sorted(langs))


def build_field_schema(columns: Iterable[str], extra_fields: Iterable[str] = ()) -> FieldSchema:
    """ヘッダ行からマージ対象フィールドの順序付きリストを構築する.

    言語別フィールドは検出した全言語について `<field>_<lc>` に展開し、
    素のフィールド名は候補に含めない。

    Args:
        columns: ヘッダ行のカラム名
        extra_fields: 設定で追加されたプロダクトフィールド

    Returns:
        FieldSchema
    """
    columns = list(columns)
    base_names = core_field_names(extra_fields)
    languages = discover_languages(columns)

    descriptors: list[FieldDescriptor] = []
    for name in base_names:
        if name in LANGUAGE_FIELDS:
            for lc in languages:
                descriptors.append(FieldDescriptor(name=f"{name}_{lc}", kind=FieldKind.LANGUAGE, base=name, lc=lc))
        elif name in TAGS_FIELDS:
            descriptors.append(
                FieldDescriptor(name=name, kind=FieldKind.TAGS, base=name, taxonomy=name in TAXONOMY_FIELDS)
            )
        else:
            descriptors.append(FieldDescriptor(name=name, kind=FieldKind.SCALAR, base=name))

    unknown = tuple(c for c in columns if classify_column(c, base_names) == ColumnFamily.UNKNOWN)
    if unknown:
        logger.debug(f"Columns not mapped to any field: {', '.join(unknown)}")

    return FieldSchema(
        fields=tuple(descriptors),
        languages=languages,
        nutrients=nutrient_ids(),
        unknown_columns=unknown,
    )
