"""外部コラボレータのインターフェース（抽象基底クラス）.

マージエンジンはストア・タクソノミ・画像サービス・エンリッチメントを
グローバル関数としてではなく、ImportContext 経由で注入されたオブジェクトとして扱う。
テストではインメモリ実装に差し替える。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from .models import ProductEntity
from .normalize import get_fileid


class ProductStore(ABC):
    """正準プロダクトの永続化サービス."""

    @abstractmethod
    def load(self, product_id: str) -> ProductEntity | None:
        """プロダクトを読み込む（存在しなければ None）."""
        ...

    @abstractmethod
    def store(self, entity: ProductEntity, message: str) -> None:
        """プロダクトを保存する.

        Raises:
            PersistenceError: 保存に失敗した場合
        """
        ...

    @abstractmethod
    def find_by_owner(self, owner: str) -> Iterator[ProductEntity]:
        """指定 owner のプロダクトを列挙する."""
        ...


class TaxonomyResolver(ABC):
    """タグ文字列 → 正準 tag id の解決."""

    @abstractmethod
    def canonicalize(self, lc: str, field: str, text: str) -> str:
        """言語 lc のタグ文字列を field のタクソノミ上の tag id に解決する."""
        ...


class ImageService(ABC):
    """画像アップロード / クロップ選択サービス."""

    @abstractmethod
    def upload(self, product_id: str, path: Path) -> int:
        """画像をアップロードし画像 id を返す.

        Raises:
            UploadError: アップロードが拒否された場合
        """
        ...

    @abstractmethod
    def select_crop(self, product_id: str, slot: str, image_id: int) -> None:
        """画像 id をスロット（`front_en` など）の表示画像として選択する.

        Raises:
            UploadError: 選択が拒否された場合
        """
        ...


class EnrichmentHooks:
    """下流のエンリッチメント処理（既定は何もしない）.

    原材料テキストの整形、アレルゲン抽出、栄養スコア計算などはこのクラスを
    継承して実装する。
    """

    def clean_ingredients_text(self, text: str, lc: str) -> str:
        """言語別の原材料テキスト整形（`ingredients_text_<lc>` のマージ時に呼ばれる）."""
        return text

    def process_product(self, entity: ProductEntity) -> None:
        """保存対象になった行で毎回呼ばれる（ドライランでも呼ばれる）."""

    def compute_derived(self, entity: ProductEntity) -> None:
        """保存直前に呼ばれる（ドライランでは呼ばれない）."""


class PlainTaxonomyResolver(TaxonomyResolver):
    """タクソノミを持たない場合の既定実装（`<lc>:<fileid>`）."""

    def canonicalize(self, lc: str, field: str, text: str) -> str:
        s = text.strip()
        # 既に言語プレフィックス付き（en:beverages）の場合はそのまま畳み込む
        if len(s) > 3 and s[2] == ":" and s[:2].isalpha():
            return f"{s[:2].lower()}:{get_fileid(s[3:])}"
        return f"{lc}:{get_fileid(s)}"
