"""商品データ取り込み（オーケストレーター）.

タブ区切りの商品データを1行ずつ既存のプロダクトにマージし、統計を返す。
値の正規化やマージ判定は core 側に寄せ、ここでは「行の検証とスキップ」
「保存するかどうかの判断」「画像の関連付け」の一連を担う。

行ごとの流れ:
    1. セルの整形、コードの正規化と検証、既定値の適用、lc の検証
    2. プロダクトの読み込み（無ければ作成）
    3. フィールド / タグ / 栄養素のマージと統計カテゴリの導出
    4. 変更があれば保存（帰属情報を追記）
    5. 画像の関連付け（変更の有無に関係なく実行、画像が増えたら保存し直す）
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from loguru import logger

from product_csv_import.adapters.tsv_adapter import TSV_Adapter
from product_csv_import.core.config import ImportContext, ImportOptions
from product_csv_import.core.exceptions import ConfigurationError, MergeSkip, PersistenceError, RowValidationError
from product_csv_import.core.images import (
    ImageMap,
    apply_image_file_columns,
    apply_image_list_columns,
    apply_image_url_columns,
    associate_images,
    load_image_rules,
    missing_required_slots,
    resolve_rules_file,
    scan_images_dir,
)
from product_csv_import.core.interfaces import ProductStore
from product_csv_import.core.merge import merge_fields
from product_csv_import.core.models import ProductEntity, RowState
from product_csv_import.core.normalize import (
    is_blank,
    is_valid_code,
    is_valid_language_code,
    normalize_code,
    sanitize_row,
)
from product_csv_import.core.nutrients import merge_nutrients
from product_csv_import.core.schema import LANGUAGE_FIELDS, FieldSchema, build_field_schema
from product_csv_import.core.stats import (
    MergeStatistics,
    build_provenance,
    check_consistency,
    derive_row_categories,
    log_summary,
)
from product_csv_import.core.tags import merge_tag_field

INTERFACE_VERSION_CREATED = "product_csv_import - version 2019/09/17"
PUBLIC_CATEGORIES_MESSAGE = "imported categories from public database"

# 栄養素に値があればラベルの tag id に追加する
NUTRIENT_LABELS = {
    "carbon-footprint": "en:carbon-footprint",
    "glycemic-index": "en:glycemic-index",
}


def load_image_map(options: ImportOptions) -> ImageMap:
    """画像ディレクトリを走査する（images_dir 未指定なら空）.

    Raises:
        ConfigurationError: ディレクトリやルールファイルが使えない場合
    """
    if options.images_dir is None:
        return {}

    rules_file = resolve_rules_file(options)
    rules = load_image_rules(rules_file) if rules_file is not None else []
    return scan_images_dir(options.images_dir, rules)


def create_product(code: str, lc: str, context: ImportContext) -> ProductEntity:
    """新しいプロダクトを作成する（保存はしない）."""
    return ProductEntity(
        code=code,
        product_id=context.product_id_for(code),
        owner=context.owner,
        created_t=context.clock(),
        fields={
            "lc": lc,
            "lang": lc,
            "interface_version_created": INTERFACE_VERSION_CREATED,
        },
    )


def add_nutrient_labels(entity: ProductEntity) -> None:
    labels = entity.tags.setdefault("labels", [])
    for nid, label in NUTRIENT_LABELS.items():
        nutrient = entity.nutriments.get(nid)
        if nutrient is not None and not is_blank(nutrient.value) and label not in labels:
            labels.append(label)


def copy_main_language_fields(entity: ProductEntity) -> None:
    """プロダクトの主言語の値を言語サフィックス無しのフィールドにコピーする."""
    lc = entity.lc
    if not lc:
        return
    for base in sorted(LANGUAGE_FIELDS):
        value = entity.fields.get(f"{base}_{lc}")
        if value is not None:
            entity.fields[base] = value


def _row_comment(options: ImportOptions, row: Mapping[str, str | None]) -> str:
    comment = options.comment
    row_comment = row.get("comment")
    if not is_blank(row_comment):
        comment = f"{comment} - {row_comment}"
    return comment


def _schema_for(
    row: Mapping[str, str | None],
    options: ImportOptions,
    cache: dict[tuple[str, ...], FieldSchema],
) -> FieldSchema:
    key = tuple(sorted(row))
    schema = cache.get(key)
    if schema is None:
        schema = build_field_schema(row.keys(), options.extra_product_fields)
        cache[key] = schema
    return schema


def _persist(
    entity: ProductEntity,
    row: Mapping[str, str | None],
    *,
    context: ImportContext,
    state: RowState,
) -> None:
    options = context.options

    add_nutrient_labels(entity)
    copy_main_language_fields(entity)
    context.hooks.process_product(entity)

    provenance = build_provenance(context, row, state)
    if provenance is not None:
        entity.sources.append(provenance)
        state.provenance = provenance

    if options.dry_run:
        logger.debug(f"Dry run - not storing product {entity.product_id}")
        return

    context.hooks.compute_derived(entity)
    logger.debug(f"Storing product {entity.product_id} ({state.modified} modifications)")
    context.store.store(entity, f"Editing product (import) - {_row_comment(options, row)}")
    state.flag("products_updated")


def _associate_row_images(
    entity: ProductEntity,
    row: Mapping[str, str | None],
    slots: dict[str, str],
    *,
    context: ImportContext,
    state: RowState,
    stats: MergeStatistics,
) -> None:
    """行の画像を関連付け、画像の統計カテゴリだけを記録する.

    新しい画像 ID や選択が増えたらプロダクトを保存し直す（来歴の images もここで保存される）。
    ここでの失敗は行のマージ結果を取り消さず、image_errors として数える。
    """
    options = context.options
    try:
        apply_image_file_columns(row, slots)
        apply_image_url_columns(row, state.code, slots, context=context)
        if associate_images(entity, slots, context=context, state=state) and not options.dry_run:
            logger.debug(f"Storing product {entity.product_id} (images {state.image_ids})")
            context.store.store(entity, f"Editing product (import images) - {_row_comment(options, row)}")
    except Exception as e:
        logger.exception(f"Row {state.row_number}: could not associate images for {state.code}: {e}")
        stats.count("image_errors")

    stats.record_image_flags(state)


def _import_row(
    raw_row: Mapping[str, object],
    row_number: int,
    *,
    context: ImportContext,
    image_map: ImageMap,
    stats: MergeStatistics,
    schemas: dict[tuple[str, ...], FieldSchema],
) -> None:
    options = context.options
    stats.count("rows")

    row = sanitize_row(raw_row)
    code = normalize_code(row.get("code"))

    if options.skip_if_not_code is not None and code != normalize_code(options.skip_if_not_code):
        raise MergeSkip("not_selected_code", code=code)

    if code == "":
        raise RowValidationError("empty code", row_number=row_number, code=code)
    if not is_valid_code(code):
        raise RowValidationError("code not a number with 8 or more digits", row_number=row_number, code=code)

    stats.add("products_in_file", code)

    for field, value in options.global_values.items():
        if is_blank(row.get(field)):
            row[field] = value

    lc = row.get("lc")
    if is_blank(lc):
        raise RowValidationError(
            "missing language code lc in csv file or global field values", row_number=row_number, code=code
        )
    if not is_valid_language_code(lc):
        raise RowValidationError(f"lc is not a 2 letter language code: {lc!r}", row_number=row_number, code=code)
    lc = str(lc)

    slots = dict(image_map.get(code, {}))
    apply_image_list_columns(row, slots)

    if options.skip_products_without_images:
        missing = missing_required_slots(slots)
        if missing:
            logger.info(f"Missing images {', '.join(missing)} for product {code}")
            raise MergeSkip("without_images", code=code)

    product_id = context.product_id_for(code)
    state = RowState(row_number=row_number, code=code)

    entity = context.store.load(product_id)
    if entity is None:
        if options.skip_not_existing_products:
            raise MergeSkip("not_existing", code=code)
        logger.debug(f"Creating not existing product {product_id}")
        entity = create_product(code, lc, context)
        state.flag("products_created")
    else:
        logger.debug(f"Product already exists: {product_id}")
        state.flag("products_already_existing")

    schema = _schema_for(row, options, schemas)
    merge_fields(entity, row, schema, context=context, state=state)
    merge_nutrients(entity, row, schema.nutrients, context=context, state=state)

    derive_row_categories(state)
    check_consistency(state)

    if entity.code != code:
        raise RowValidationError(
            f"code mismatch after merge: {entity.code!r}", row_number=row_number, code=code
        )

    logger.debug(f"Number of modifications for {code}: {state.modified}")
    if state.modified == 0:
        logger.debug(f"Skipping - no modifications for {code}")
        stats.count("skipped_not_modified")
    elif options.skip_products_without_info and state.has("products_without_info"):
        logger.debug(f"Skipping - product without info for {code}")
        stats.count("skipped_without_info")
    else:
        _persist(entity, row, context=context, state=state)

    stats.record_row(state)

    # 画像は保存判定の後（新規作成の場合も）に関連付ける
    _associate_row_images(entity, row, slots, context=context, state=state, stats=stats)


def import_rows(
    rows: Iterable[Mapping[str, object]],
    context: ImportContext,
    *,
    image_map: ImageMap | None = None,
    stats: MergeStatistics | None = None,
) -> MergeStatistics:
    """取り込み行を順にマージする.

    Args:
        rows: 列名 → セル値 の行
        context: 実行コンテキスト
        image_map: 画像ディレクトリの走査結果（load_image_map() の戻り値）
        stats: 追記先の統計（None なら新規作成）

    Returns:
        カテゴリ名 → コード集合 の統計

    Raises:
        ConfigurationError: 設定が不正な場合（行の処理前に送出）
    """
    context.options.validate()
    stats = stats if stats is not None else MergeStatistics()
    image_map = image_map or {}
    schemas: dict[tuple[str, ...], FieldSchema] = {}

    for row_number, raw_row in enumerate(rows, start=1):
        try:
            _import_row(
                raw_row,
                row_number,
                context=context,
                image_map=image_map,
                stats=stats,
                schemas=schemas,
            )
        except MergeSkip as e:
            logger.debug(f"Row {row_number}: {e}")
            stats.count(f"skipped_{e.reason}")
        except RowValidationError as e:
            logger.error(f"Error - {e}")
            stats.count("errors")
        except PersistenceError as e:
            logger.error(f"Row {row_number}: {e}")
            stats.count("errors")
        except Exception as e:
            logger.exception(f"Row {row_number}: unexpected error: {e}")
            stats.count("errors")

    log_summary(stats)
    return stats


def import_csv_file(csv_path: Path | str, context: ImportContext) -> MergeStatistics:
    """タブ区切りの商品データファイルを取り込む.

    Args:
        csv_path: 入力ファイル（UTF-8、タブ区切り、1行目がヘッダ）
        context: 実行コンテキスト

    Returns:
        カテゴリ名 → コード集合 の統計

    Raises:
        ConfigurationError: 設定、画像ディレクトリ、ルールファイルが不正な場合
        FileNotFoundError: 入力ファイルが存在しない場合
        ValueError: 入力ファイルが読めない、code 列が無い場合
    """
    context.options.validate()

    image_map = load_image_map(context.options)
    stats = MergeStatistics()
    for code in image_map:
        stats.add("products_with_images_even_if_no_data", code)

    logger.info(f"[Import] Importing products from {csv_path}")
    adapter = TSV_Adapter(csv_path)
    return import_rows(adapter.rows(), context, image_map=image_map, stats=stats)


def import_categories_from_public_store(
    context: ImportContext,
    public_store: ProductStore,
    owner: str | None = None,
) -> int:
    """公開データベースのカテゴリを owner のプロダクトに取り込む.

    公開側のカテゴリは和集合でマージし、表示文字列が変わったプロダクトだけ保存する。

    Args:
        context: 実行コンテキスト（store が owner のプロダクトを持つ）
        public_store: 公開データベース（product_id = code）
        owner: 対象の owner（None なら context.owner）

    Returns:
        カテゴリが更新されたプロダクト数

    Raises:
        ConfigurationError: owner が指定されていない場合
    """
    owner = owner or context.owner
    if not owner:
        raise ConfigurationError("An owner is required to import categories from the public database")

    updated = 0
    for entity in list(context.store.find_by_owner(owner)):
        public = public_store.load(entity.code)
        if public is None or is_blank(public.get("categories")):
            continue

        state = RowState(row_number=0, code=entity.code)
        changed = merge_tag_field(
            entity,
            "categories",
            public.get("categories") or "",
            context=context,
            state=state,
            lc=public.lc or "en",
        )
        if not changed:
            continue

        logger.debug(f"Updated categories for {entity.product_id}: {entity.get('categories')}")
        context.hooks.process_product(entity)
        if not context.options.dry_run:
            context.hooks.compute_derived(entity)
            try:
                context.store.store(entity, PUBLIC_CATEGORIES_MESSAGE)
            except PersistenceError as e:
                logger.error(f"{entity.product_id}: {e}")
                continue
        updated += 1

    logger.info(f"Imported categories from public database for {updated} products")
    return updated
