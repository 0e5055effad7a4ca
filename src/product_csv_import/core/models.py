"""プロダクトエンティティと行単位の状態.

ストアに保存される正準レコード（ProductEntity）と、1行のマージ中にだけ存在する
作業状態（RowState）を定義します。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

_NUMERIC_IMAGE_ID = re.compile(r"^\d+$")


@dataclass
class NutrientValue:
    """栄養表の1エントリ（値は正規化済みの文字列のまま保持する）."""

    value: str
    unit: str | None = None
    modifier: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"value": self.value, "unit": self.unit, "modifier": self.modifier}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NutrientValue:
        return cls(value=str(data.get("value", "")), unit=data.get("unit"), modifier=data.get("modifier"))


@dataclass
class ProvenanceRecord:
    """取り込み元の帰属情報（1回の保存につき1件追加される）."""

    source_id: str
    source_name: str
    source_url: str
    imported_t: int
    fields: list[str] = field(default_factory=list)
    images: list[int] = field(default_factory=list)
    manufacturer: bool | None = None
    licence: str | None = None
    licence_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.source_id,
            "name": self.source_name,
            "url": self.source_url,
            "manufacturer": self.manufacturer,
            "import_t": self.imported_t,
            "fields": list(self.fields),
            "images": list(self.images),
        }
        if self.licence is not None:
            data["source_licence"] = self.licence
        if self.licence_url is not None:
            data["source_licence_url"] = self.licence_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvenanceRecord:
        return cls(
            source_id=data["id"],
            source_name=data.get("name", ""),
            source_url=data.get("url", ""),
            imported_t=int(data.get("import_t", 0)),
            fields=list(data.get("fields", [])),
            images=[int(i) for i in data.get("images", [])],
            manufacturer=data.get("manufacturer"),
            licence=data.get("source_licence"),
            licence_url=data.get("source_licence_url"),
        )


@dataclass
class ProductEntity:
    """正準プロダクトレコード.

    - fields: スカラー値・言語別値・タグ集合の表示文字列（カンマ区切り）
    - tags: タグ集合フィールドごとの tag id リスト（表示文字列から導出、重複なし）
    - nutriments: 栄養素 id（`_prepared` 付きを含む）→ NutrientValue
    - owner_fields: 所有組織が最後に書いたフィールド → タイムスタンプ
    - sources: 帰属情報（追記のみ）
    - images: 画像 id（数字文字列）/ 選択済みスロット名（`front_en` など）→ 画像情報
    """

    code: str
    product_id: str
    owner: str | None = None
    created_t: int | None = None
    fields: dict[str, str] = field(default_factory=dict)
    tags: dict[str, list[str]] = field(default_factory=dict)
    nutriments: dict[str, NutrientValue] = field(default_factory=dict)
    owner_fields: dict[str, int] = field(default_factory=dict)
    sources: list[ProvenanceRecord] = field(default_factory=list)
    images: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def lc(self) -> str | None:
        return self.fields.get("lc")

    def get(self, name: str) -> str | None:
        if name == "code":
            return self.code
        return self.fields.get(name)

    def set(self, name: str, value: str) -> None:
        # code は作成後に変更しない
        if name == "code":
            raise ValueError("code is immutable once the product is created")
        self.fields[name] = value

    def has_value(self, name: str) -> bool:
        value = self.get(name)
        return value is not None and value.strip() != ""

    def max_image_id(self) -> int:
        """アップロード済み画像 id の最大値（無ければ -1）."""
        ids = [int(k) for k in self.images if _NUMERIC_IMAGE_ID.match(k)]
        return max(ids, default=-1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "product_id": self.product_id,
            "owner": self.owner,
            "created_t": self.created_t,
            "fields": dict(self.fields),
            "tags": {k: list(v) for k, v in self.tags.items()},
            "nutriments": {k: v.to_dict() for k, v in self.nutriments.items()},
            "owner_fields": dict(self.owner_fields),
            "sources": [s.to_dict() for s in self.sources],
            "images": {k: dict(v) for k, v in self.images.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProductEntity:
        return cls(
            code=data["code"],
            product_id=data["product_id"],
            owner=data.get("owner"),
            created_t=data.get("created_t"),
            fields=dict(data.get("fields", {})),
            tags={k: list(v) for k, v in data.get("tags", {}).items()},
            nutriments={k: NutrientValue.from_dict(v) for k, v in data.get("nutriments", {}).items()},
            owner_fields=dict(data.get("owner_fields", {})),
            sources=[ProvenanceRecord.from_dict(s) for s in data.get("sources", [])],
            images={k: dict(v) for k, v in data.get("images", {}).items()},
        )


@dataclass
class RowState:
    """1行分のマージ作業状態.

    Attributes:
        row_number: 入力ファイル内の行番号
        code: 正規化済みコード
        modified: 変更カウンタ（追加・変更・削除の件数）
        modified_fields: 追加/変更されたフィールド名（帰属情報に記録される）
        differing_fields: 既存値と異なる値で上書きしたスカラーフィールド名
        flags: この行で立った統計カテゴリ
        image_ids: この行で新規にアップロードされた画像 id
    """

    row_number: int
    code: str
    modified: int = 0
    modified_fields: list[str] = field(default_factory=list)
    differing_fields: list[str] = field(default_factory=list)
    flags: set[str] = field(default_factory=set)
    image_ids: list[int] = field(default_factory=list)
    provenance: ProvenanceRecord | None = None

    def flag(self, category: str) -> None:
        self.flags.add(category)

    def has(self, category: str) -> bool:
        return category in self.flags

    def record_change(self, field_name: str | None, category: str) -> None:
        """変更を1件記録する（フィールド名は帰属情報用、None なら記録しない）."""
        if field_name is not None:
            self.modified_fields.append(field_name)
        self.modified += 1
        self.flags.add(category)
