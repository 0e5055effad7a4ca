"""栄養表のマージ.

栄養素 id ごとに、複数のカラム表記（`<nid>_value`, `<nid>_100g_value`,
`<nid>_value_in_<unit>` など）から値・単位・修飾子を解決して栄養表に書き込み、
書き込み前後のスナップショットを比較して追加/変更/削除を数える。

業務ルール:
    - 同じ行で salt に値が入った場合、sodium はその行では扱わない
    - alcohol の単位はカラムに関係なく "% vol"
    - 栄養素が1つでも入り、行が nutrition_data_per を指定していなければ "100g" にする
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from .config import ImportContext
from .models import NutrientValue, ProductEntity, RowState
from .normalize import is_blank, normalize_nutrient_unit, normalize_nutrient_value_and_modifier
from .schema import NUTRIENT_UNIT_TOKENS

PREPARED_SUFFIX = "_prepared"
SALT = "salt"
SODIUM = "sodium"
ALCOHOL = "alcohol"
ALCOHOL_UNIT = "% vol"

_KILOJOULE_NUTRIENTS = frozenset({"energy", "energy-kj", "energy-from-fat"})
_UNITLESS_NUTRIENTS = frozenset({"ph", "nutrition-score-fr-producer", "glycemic-index"})


def default_unit(nid: str) -> str | None:
    """単位が入力に無く、既存値にも無い場合の既定単位."""
    if nid == "energy-kcal":
        return "kcal"
    if nid in _KILOJOULE_NUTRIENTS:
        return "kJ"
    if nid == ALCOHOL:
        return ALCOHOL_UNIT
    if nid in _UNITLESS_NUTRIENTS or nid.startswith("nutrition-score"):
        return None
    return "g"


def _first_non_blank(row: Mapping[str, str | None], columns: Iterable[str]) -> str | None:
    for column in columns:
        value = row.get(column)
        if not is_blank(value):
            return value
    return None


def resolve_nutrient_input(
    row: Mapping[str, str | None],
    nid: str,
    *,
    prepared: bool = False,
) -> tuple[str | None, str | None]:
    """行から栄養素の生値と単位を解決する.

    Args:
        row: 入力行
        nid: 栄養素 id
        prepared: 調理後（`_prepared`）の値を解決するか

    Returns:
        (value, unit) のタプル。単位付きカラム（`_value_in_<unit>`）が見つかった場合、
        その単位が unit カラムより優先される。
    """
    infix = PREPARED_SUFFIX if prepared else ""

    value = _first_non_blank(row, (f"{nid}{infix}_value", f"{nid}_100g{infix}_value"))
    unit = _first_non_blank(row, (f"{nid}{infix}_unit", f"{nid}_100g{infix}_unit", f"{nid}_unit", f"{nid}_100g_unit"))

    for token in NUTRIENT_UNIT_TOKENS:
        value_in_unit = _first_non_blank(
            row,
            (f"{nid}{infix}_value_in_{token}", f"{nid}_100g{infix}_value_in_{token}"),
        )
        if value_in_unit is not None:
            value = value_in_unit
            unit = token

    if nid == ALCOHOL:
        unit = ALCOHOL_UNIT

    return value, unit


def snapshot_nutrient(entity: ProductEntity, nid: str) -> dict[str, str | None]:
    """差分比較用に栄養素の5つのサブフィールドを取り出す."""
    base = entity.nutriments.get(nid)
    prepared = entity.nutriments.get(f"{nid}{PREPARED_SUFFIX}")
    return {
        f"{nid}_modifier": base.modifier if base else None,
        f"{nid}_modifierp": prepared.modifier if prepared else None,
        f"{nid}_value": base.value if base else None,
        f"{nid}_valuep": prepared.value if prepared else None,
        f"{nid}_unit": base.unit if base else None,
    }


def assign_nutrient(
    entity: ProductEntity,
    key: str,
    nid: str,
    *,
    value: str,
    unit: str | None,
    modifier: str | None,
) -> None:
    """栄養表に値を書き込む（修飾子が無ければ既存の修飾子は消える）."""
    existing = entity.nutriments.get(key)
    resolved_unit = normalize_nutrient_unit(unit)
    if resolved_unit is None:
        resolved_unit = existing.unit if existing and existing.unit else default_unit(nid)
    entity.nutriments[key] = NutrientValue(value=value, unit=resolved_unit, modifier=modifier)


def _diff_snapshot(
    before: Mapping[str, str | None],
    after: Mapping[str, str | None],
    state: RowState,
) -> None:
    for key in sorted(before):
        old = before[key]
        new = after[key]
        if not is_blank(new) and not is_blank(old) and new != old:
            logger.debug(f"Differing nutrient value {key}: {old!r} -> {new!r}")
            state.flag("products_nutrition_updated")
            state.record_change(None, "products_nutrition_changed")
        elif not is_blank(new) and is_blank(old):
            logger.debug(f"New nutrient value {key}: {new!r}")
            state.flag("products_nutrition_updated")
            state.record_change(None, "products_nutrition_added")
        elif is_blank(new) and not is_blank(old):
            logger.debug(f"Deleted nutrient value {key}: {old!r}")
            state.record_change(None, "products_nutrition_updated")


def merge_nutrients(
    entity: ProductEntity,
    row: Mapping[str, str | None],
    nutrient_ids: Iterable[str],
    *,
    context: ImportContext,
    state: RowState,
) -> None:
    """栄養表全体をマージする.

    Args:
        entity: マージ先プロダクト
        row: 整形済みの入力行
        nutrient_ids: 栄養素 id の順序付きリスト（FieldSchema.nutrients）
        context: 実行コンテキスト
        state: 行の作業状態
    """
    now = context.clock()
    seen_salt = False

    for nid in nutrient_ids:
        if nid == SODIUM and seen_salt:
            continue

        nidp = f"{nid}{PREPARED_SUFFIX}"
        before = snapshot_nutrient(entity, nid)

        raw_value, unit = resolve_nutrient_input(row, nid)
        raw_valuep, unitp = resolve_nutrient_input(row, nid, prepared=True)

        if raw_value is not None:
            value, modifier = normalize_nutrient_value_and_modifier(raw_value)
            if value != "":
                if nid == SALT:
                    seen_salt = True
                logger.debug(f"Nutrient {nid} with value {value} {unit or ''}")
                state.flag("products_with_nutrition")
                assign_nutrient(entity, nid, nid, value=value, unit=unit, modifier=modifier)
                if context.owner_attributed:
                    entity.owner_fields[nid] = now

        if raw_valuep is not None:
            valuep, modifierp = normalize_nutrient_value_and_modifier(raw_valuep)
            if valuep != "":
                logger.debug(f"Nutrient {nidp} with prepared value {valuep} {unitp or ''}")
                state.flag("products_with_nutrition")
                assign_nutrient(entity, nidp, nid, value=valuep, unit=unitp, modifier=modifierp)
                if context.owner_attributed:
                    entity.owner_fields[nidp] = now

        _diff_snapshot(before, snapshot_nutrient(entity, nid), state)

    if state.has("products_with_nutrition") and is_blank(row.get("nutrition_data_per")):
        if entity.get("nutrition_data_per") != "100g":
            entity.set("nutrition_data_per", "100g")
            state.record_change(None, "products_nutrition_data_per_updated")
