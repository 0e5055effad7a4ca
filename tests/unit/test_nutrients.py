"""Unit tests for the nutrition table merge."""

from collections.abc import Callable

from product_csv_import.core.config import ImportContext
from product_csv_import.core.models import NutrientValue, ProductEntity, RowState
from product_csv_import.core.nutrients import default_unit, merge_nutrients, resolve_nutrient_input
from product_csv_import.core.schema import nutrient_ids


def _entity(**fields: str) -> ProductEntity:
    return ProductEntity(code="8000000000001", product_id="8000000000001", fields={"lc": "en", **fields})


def _merge(entity: ProductEntity, row: dict[str, str | None], context: ImportContext) -> RowState:
    state = RowState(row_number=1, code=entity.code)
    merge_nutrients(entity, row, nutrient_ids(), context=context, state=state)
    return state


class TestResolveNutrientInput:
    """resolve_nutrient_input関数のテスト."""

    def test_value_and_unit_columns(self) -> None:
        """_value列と_unit列から値と単位を取ることを確認."""
        assert resolve_nutrient_input({"fat_100g_value": "3", "fat_unit": "g"}, "fat") == ("3", "g")

    def test_value_in_unit_overrides_unit_column(self) -> None:
        """_value_in_<unit>列が_unit列より優先されることを確認."""
        row = {"energy-kj_value": "900", "energy-kj_value_in_kj": "1000", "energy-kj_unit": "kcal"}
        assert resolve_nutrient_input(row, "energy-kj") == ("1000", "kj")

    def test_prepared_columns(self) -> None:
        """prepared=Trueでは調理後の列が使われることを確認."""
        row = {"fat_value": "3", "fat_prepared_value": "5"}
        assert resolve_nutrient_input(row, "fat", prepared=True) == ("5", None)

    def test_alcohol_unit_forced(self) -> None:
        """アルコールの単位が% volになることを確認."""
        assert resolve_nutrient_input({"alcohol_value": "5", "alcohol_unit": "%"}, "alcohol") == ("5", "% vol")

    def test_default_units(self) -> None:
        """単位が無い場合の既定値を確認."""
        assert default_unit("energy-kcal") == "kcal"
        assert default_unit("energy") == "kJ"
        assert default_unit("sugars") == "g"
        assert default_unit("ph") is None


class TestMergeNutrients:
    """merge_nutrients関数のテスト."""

    def test_salt_wins_over_sodium(self, context: ImportContext) -> None:
        """塩分とナトリウムの両方がある場合は塩分が使われることを確認."""
        entity = _entity()

        state = _merge(entity, {"salt_value": "1.5", "sodium_value": "0.6"}, context)

        assert entity.nutriments["salt"] == NutrientValue(value="1.5", unit="g")
        assert "sodium" not in entity.nutriments
        assert state.has("products_with_nutrition")
        assert state.has("products_nutrition_added")
        assert state.has("products_nutrition_updated")

    def test_sodium_used_without_salt(self, context: ImportContext) -> None:
        """塩分が無い場合はナトリウムが使われることを確認."""
        entity = _entity()
        entity.nutriments["sodium"] = NutrientValue(value="500", unit="mg")

        _merge(entity, {"sodium_value": "600"}, context)

        assert entity.nutriments["sodium"] == NutrientValue(value="600", unit="mg")

    def test_modifier_is_split(self, context: ImportContext) -> None:
        """比較記号が分離して保存されることを確認."""
        entity = _entity()

        _merge(entity, {"sugars_100g_value": "< 0,5"}, context)

        assert entity.nutriments["sugars"] == NutrientValue(value="0.5", unit="g", modifier="<")

    def test_removed_modifier_counts_as_update(self, context: ImportContext) -> None:
        """比較記号の削除が更新として数えられることを確認."""
        entity = _entity(nutrition_data_per="100g")
        entity.nutriments["sugars"] = NutrientValue(value="0.5", unit="g", modifier="<")

        state = _merge(entity, {"sugars_value": "0.5"}, context)

        assert entity.nutriments["sugars"].modifier is None
        assert state.modified == 1
        assert state.has("products_nutrition_updated")
        assert not state.has("products_nutrition_changed")
        assert not state.has("products_nutrition_added")

    def test_changed_value(self, context: ImportContext) -> None:
        """値の変更がchangedとして数えられることを確認."""
        entity = _entity(nutrition_data_per="100g")
        entity.nutriments["fat"] = NutrientValue(value="3", unit="g")

        state = _merge(entity, {"fat_value": "4"}, context)

        assert entity.nutriments["fat"].value == "4"
        assert state.modified == 1
        assert state.has("products_nutrition_changed")

    def test_zero_is_a_value(self, context: ImportContext) -> None:
        """0は空値ではないことを確認."""
        entity = _entity()

        _merge(entity, {"fat_value": "0"}, context)

        assert entity.nutriments["fat"].value == "0"

    def test_nan_is_ignored(self, context: ImportContext) -> None:
        """NaNは無視されることを確認."""
        entity = _entity()

        state = _merge(entity, {"fat_value": "NaN"}, context)

        assert "fat" not in entity.nutriments
        assert state.modified == 0
        assert entity.get("nutrition_data_per") is None

    def test_prepared_values_are_separate(self, context: ImportContext) -> None:
        """調理後の値が別に保存されることを確認."""
        entity = _entity()

        state = _merge(entity, {"fat_prepared_value": "5"}, context)

        assert entity.nutriments["fat_prepared"] == NutrientValue(value="5", unit="g")
        assert "fat" not in entity.nutriments
        assert state.has("products_nutrition_added")

    def test_alcohol_unit(self, context: ImportContext) -> None:
        """アルコールは% volで保存されることを確認."""
        entity = _entity()

        _merge(entity, {"alcohol_value": "5"}, context)

        assert entity.nutriments["alcohol"].unit == "% vol"

    def test_nutrition_data_per_defaults_to_100g(self, context: ImportContext) -> None:
        """nutrition_data_perの既定値が100gであることを確認."""
        entity = _entity()

        state = _merge(entity, {"fat_value": "3"}, context)

        assert entity.get("nutrition_data_per") == "100g"
        assert state.has("products_nutrition_data_per_updated")

    def test_row_nutrition_data_per_is_respected(self, context: ImportContext) -> None:
        """行のnutrition_data_perが使われることを確認."""
        entity = _entity()

        state = _merge(entity, {"fat_value": "3", "nutrition_data_per": "serving"}, context)

        assert entity.get("nutrition_data_per") is None
        assert not state.has("products_nutrition_data_per_updated")

    def test_second_merge_is_no_op(self, context: ImportContext) -> None:
        """同じ値の2回目のマージは変更にならないことを確認."""
        entity = _entity()
        row = {"fat_value": "3", "salt_value": "< 0.1", "energy-kcal_value": "250"}
        _merge(entity, row, context)

        state = _merge(entity, row, context)

        assert state.modified == 0
        assert not state.has("products_nutrition_updated")

    def test_owner_fields_for_organization(self, make_context: Callable[..., ImportContext]) -> None:
        """組織のownerの場合に栄養素の書き込み時刻が記録されることを確認."""
        context = make_context(owner="org-acme")
        entity = _entity()

        _merge(entity, {"fat_value": "3", "fat_prepared_value": "5"}, context)

        assert entity.owner_fields == {"fat": 1_700_000_000, "fat_prepared": 1_700_000_000}
