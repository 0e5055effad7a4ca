"""フィールド単位のマージ.

候補フィールドを順に処理し、入力値が「新規」「変更」「変化なし」「既存値優先」の
どれに当たるかを判定します。タグ集合フィールドは tags.merge_tag_field() に委譲する。

処理順（フィールドごと）:
    1. `<field>_if_not_existing` のフォールバック（既存値が無い場合のみ）
    2. `<field>:<tag>` の真偽サブフィールドをタグとして追加（タグ集合のみ）
    3. 入力が空ならスキップ
    4. タグ集合 / スカラーに振り分け
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from loguru import logger

from .config import ImportContext
from .models import ProductEntity, RowState
from .normalize import is_blank, normalize_quantity, sanitize_cell
from .schema import FieldDescriptor, FieldSchema
from .tags import merge_tag_field

QUANTITY_FIELDS = frozenset({"quantity", "serving_size"})

_AFFIRMATIVE = re.compile(r"^\s*(?:1|y|yes|o|oui)\s*$", re.IGNORECASE)
_INGREDIENTS_TEXT = re.compile(r"^ingredients_text_([a-z]{2})$")

FALLBACK_SUFFIX = "_if_not_existing"


def collect_incoming_value(
    entity: ProductEntity,
    row: Mapping[str, str | None],
    descriptor: FieldDescriptor,
) -> str | None:
    """フォールバックと真偽サブフィールドを適用した入力値を返す."""
    field = descriptor.name
    value = row.get(field)

    fallback = row.get(f"{field}{FALLBACK_SUFFIX}")
    if not entity.has_value(field) and not is_blank(fallback):
        logger.debug(f"No existing value for {field}, using {field}{FALLBACK_SUFFIX}: {fallback}")
        value = fallback

    if descriptor.is_tags:
        prefix = f"{field}:"
        for column in sorted(row):
            if not column.startswith(prefix):
                continue
            flag_value = row[column]
            if flag_value is not None and _AFFIRMATIVE.match(flag_value):
                tag_name = column[len(prefix) :]
                value = tag_name if is_blank(value) else f"{value},{tag_name}"

    return value


def normalize_scalar_value(field: str, value: str, context: ImportContext) -> str:
    """スカラー値を保存用に整形する（数量の単位、原材料テキストの言語別整形）."""
    s = value.strip()

    if field in QUANTITY_FIELDS:
        s = normalize_quantity(s)

    m = _INGREDIENTS_TEXT.match(field)
    if m:
        s = context.hooks.clean_ingredients_text(s, m.group(1)).strip()

    return s


def merge_scalar_field(
    entity: ProductEntity,
    field: str,
    incoming: str,
    *,
    context: ImportContext,
    state: RowState,
) -> bool:
    """スカラー値をマージする.

    - 既存値が無ければ設定する（info_added）
    - 既存値と大文字小文字を無視して異なれば上書きする（info_changed）。
      ただし skip_existing_values の場合は既存値を残す
    - quantity は単位正規化後に一致しても、生の既存値が異なれば正規化済みの値で上書きする

    Returns:
        値を書き込んだ場合 True
    """
    new_value = normalize_scalar_value(field, incoming, context)
    if new_value == "":
        return False

    if not entity.has_value(field):
        logger.debug(f"Setting previously unexisting value for {field}: {new_value}")
        entity.set(field, new_value)
        state.record_change(field, "products_info_added")
        return True

    if context.options.skip_existing_values:
        logger.debug(f"Skip existing value for {field}: {entity.get(field)}")
        return False

    existing = entity.get(field) or ""
    current = existing.strip()
    if field in QUANTITY_FIELDS:
        current = normalize_quantity(current)

    if current.lower() != new_value.lower():
        logger.debug(f"Differing value for {field}: existing={existing!r} new={new_value!r}")
        entity.set(field, new_value)
        state.differing_fields.append(field)
        state.record_change(field, "products_info_changed")
        return True

    if field == "quantity" and existing != new_value:
        logger.debug(f"Normalizing quantity: {existing!r} -> {new_value!r}")
        entity.set(field, new_value)
        state.record_change(field, "products_info_changed")
        return True

    return False


def merge_fields(
    entity: ProductEntity,
    row: Mapping[str, str | None],
    schema: FieldSchema,
    *,
    context: ImportContext,
    state: RowState,
) -> None:
    """候補フィールド全体を順にマージする.

    Args:
        entity: マージ先プロダクト（その場で更新される）
        row: 整形済みの入力行
        schema: build_field_schema() で作ったフィールド定義
        context: 実行コンテキスト
        state: 行の作業状態
    """
    now = context.clock()

    for descriptor in schema.fields:
        field = descriptor.name
        incoming = sanitize_cell(collect_incoming_value(entity, row, descriptor))
        if not incoming:
            continue

        logger.debug(f"Defined and non empty value for {field}: {incoming}")

        if "product_name" in field or field == "brands":
            state.flag("products_with_info")
        if field.startswith("ingredients"):
            state.flag("products_with_ingredients")

        if descriptor.is_tags:
            written = merge_tag_field(entity, field, incoming, context=context, state=state)
        else:
            written = merge_scalar_field(entity, field, incoming, context=context, state=state)

        if written and context.owner_attributed:
            entity.owner_fields[field] = now
