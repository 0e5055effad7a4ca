"""タグ集合フィールドのマージ.

- 和集合方式: 既存 tag id に無いタグだけを表示文字列に追記する（既存タグは削除しない）
- brands は既存 id と一致した場合でも表記（大文字小文字）を新しい入力に合わせる
- 表示文字列が変わったら tag id リストを再計算する（既存 id の順序は保持）
"""

from __future__ import annotations

import re

from loguru import logger

from .config import ImportContext
from .models import ProductEntity, RowState
from .normalize import get_fileid, is_blank, normalize_packager_codes
from .schema import TAXONOMY_FIELDS

_EMPTY_TOKEN = re.compile(r"^[\s,\-%;_°]*$")
_CASE_SEPARATORS = re.compile(r"[ -]")

PACKAGER_CODES_FIELD = "emb_codes"
BRANDS_FIELD = "brands"


def resolve_tag_id(context: ImportContext, field: str, lc: str, tag: str) -> str:
    """タグ文字列を tag id に解決する（タクソノミ対象外は get_fileid で畳み込む）."""
    if field in TAXONOMY_FIELDS:
        return context.taxonomy.canonicalize(lc, field, tag)
    return get_fileid(tag)


def split_tags(value: str | None) -> list[str]:
    """カンマ区切り文字列をタグのリストにする（記号だけのトークンは捨てる）."""
    if value is None:
        return []
    return [token.strip() for token in value.split(",") if not _EMPTY_TOKEN.match(token)]


def compute_field_tags(entity: ProductEntity, context: ImportContext, field: str, lc: str) -> list[str]:
    """表示文字列から tag id リストを再計算する.

    既存の id は順序ごと保持し、表示文字列から得られた新しい id だけを末尾に追加する。
    そのため tag id 集合はマージのたびに単調増加する。

    Returns:
        更新後の tag id リスト
    """
    tag_ids = list(entity.tags.get(field, []))
    seen = set(tag_ids)

    for tag in split_tags(entity.get(field)):
        tag_id = resolve_tag_id(context, field, lc, tag)
        if tag_id and tag_id not in seen:
            tag_ids.append(tag_id)
            seen.add(tag_id)

    entity.tags[field] = tag_ids
    return tag_ids


def _update_casing(display: str, tag: str) -> str:
    # タグは正規表現ではなく文字列として扱う（空白とハイフンだけ同一視）
    parts = [re.escape(p) for p in _CASE_SEPARATORS.split(tag)]
    pattern = re.compile(r"(?<!\w)" + "[ -]".join(parts) + r"(?!\w)", re.IGNORECASE)
    return pattern.sub(lambda _m: tag, display, count=1)


def merge_tag_field(
    entity: ProductEntity,
    field: str,
    incoming: str,
    *,
    context: ImportContext,
    state: RowState,
    lc: str | None = None,
) -> bool:
    """タグ集合フィールドに入力タグを和集合でマージする.

    Args:
        entity: マージ先プロダクト
        field: フィールド名（categories, labels, brands など）
        incoming: カンマ区切りの入力タグ
        context: 実行コンテキスト
        state: 行の作業状態（変更カウンタと統計フラグを更新する）
        lc: タグ解釈の言語（None なら context.tag_lc(entity)）

    Returns:
        表示文字列が変わった場合 True
    """
    tag_lc = lc or context.tag_lc(entity)
    current = entity.get(field)
    display = current or ""
    seen = set(entity.tags.get(field, []))

    for tag in split_tags(incoming):
        if field == PACKAGER_CODES_FIELD:
            tag = normalize_packager_codes(tag)
        if not tag:
            continue

        tag_id = resolve_tag_id(context, field, tag_lc, tag)
        if not tag_id:
            continue

        if tag_id not in seen:
            logger.debug(f"Adding tag id {tag_id} to {field}")
            display = f"{display}, {tag}"
            seen.add(tag_id)
        elif field == BRANDS_FIELD:
            display = _update_casing(display, tag)

    if display.startswith(", "):
        display = display[2:]

    if display == "":
        return False

    if field == PACKAGER_CODES_FIELD:
        entity.set(f"{field}_orig", display)
        display = normalize_packager_codes(display)

    entity.set(field, display)

    if is_blank(current):
        logger.debug(f"Added value to {field}: {display}")
        compute_field_tags(entity, context, field, tag_lc)
        state.record_change(field, "products_info_added")
        return True

    if current != display:
        logger.debug(f"Changed value for {field}: {current!r} -> {display!r}")
        compute_field_tags(entity, context, field, tag_lc)
        state.record_change(field, "products_info_changed")
        return True

    if field == BRANDS_FIELD:
        compute_field_tags(entity, context, field, tag_lc)

    return False
