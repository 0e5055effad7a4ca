"""インポート設定と実行コンテキスト.

取り込み1回分のスイッチ（ImportOptions）と、操作ユーザー/組織・注入された
コラボレータをまとめた ImportContext を定義します。
ユーザーや組織はグローバル状態に置かず、必ず ImportContext 経由で渡す。

YAML形式:
    source:
      id: "acme"
      name: "ACME Foods"
      url: "https://acme.example/"
      licence: "ODbL"
    images_dir: "/data/acme/images"
    images_download_dir: "/data/acme/downloads"
    skip_existing_values: true
    global_values:
      countries: "France"
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import httpx
import yaml
from loguru import logger

from .exceptions import ConfigurationError
from .interfaces import EnrichmentHooks, ImageService, PlainTaxonomyResolver, ProductStore, TaxonomyResolver
from .models import ProductEntity

DEFAULT_IMAGE_FETCH_TIMEOUT = 10.0


@dataclass(frozen=True)
class SourceAttribution:
    source_id: str
    source_name: str
    source_url: str
    licence: str | None = None
    licence_url: str | None = None
    manufacturer: bool | None = None


@dataclass(frozen=True)
class ImportOptions:
    """取り込み1回分の設定（すべて任意）.

    Attributes:
        source: 帰属情報（no_source でない限り必須）
        no_source: 帰属情報を記録しない
        global_values: 空セルに適用する既定値（列名 → 値）
        images_dir: ローカル画像ディレクトリ
        images_rules_file: ファイル名書き換えルール（未指定なら images_dir/images.rules）
        images_download_dir: URL 画像のダウンロード先
        dry_run: 統計は計算するが、保存と画像アップロードは行わない
        skip_if_not_code: このコードの行だけを処理する
        skip_not_existing_products: 既存プロダクトの行だけを処理する
        skip_products_without_info: 商品名/ブランドが無い行は保存しない
        skip_products_without_images: front/ingredients 画像が無い行を処理しない
        skip_existing_values: 既存のスカラー値を上書きしない
        only_select_not_existing_images: 空のスロットにだけ画像を選択する
        import_lc: タグ解釈に使う言語（未指定ならプロダクトの lc）
        extra_product_fields: 追加のプロダクトフィールド
        comment: 保存メッセージに付けるコメント
        image_fetch_timeout: 画像ダウンロードのタイムアウト（秒）
    """

    source: SourceAttribution | None = None
    no_source: bool = False
    global_values: Mapping[str, str] = field(default_factory=dict)
    images_dir: Path | None = None
    images_rules_file: Path | None = None
    images_download_dir: Path | None = None
    dry_run: bool = False
    skip_if_not_code: str | None = None
    skip_not_existing_products: bool = False
    skip_products_without_info: bool = False
    skip_products_without_images: bool = False
    skip_existing_values: bool = False
    only_select_not_existing_images: bool = False
    import_lc: str | None = None
    extra_product_fields: tuple[str, ...] = ()
    comment: str = ""
    image_fetch_timeout: float = DEFAULT_IMAGE_FETCH_TIMEOUT

    def validate(self) -> None:
        """設定の妥当性を検証する.

        Raises:
            ConfigurationError: 帰属情報が不足している場合
        """
        if self.no_source:
            return
        if self.source is None:
            raise ConfigurationError("Source attribution (id, name, url) is required unless no_source is set")
        missing = [
            name
            for name, value in (
                ("id", self.source.source_id),
                ("name", self.source.source_name),
                ("url", self.source.source_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Source attribution is missing: {', '.join(missing)}")


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class ImportContext:
    """1回の取り込みで全マージ処理に引き回すコンテキスト."""

    store: ProductStore
    options: ImportOptions = field(default_factory=ImportOptions)
    user_id: str | None = None
    org_id: str | None = None
    owner: str | None = None
    taxonomy: TaxonomyResolver = field(default_factory=PlainTaxonomyResolver)
    images: ImageService | None = None
    hooks: EnrichmentHooks = field(default_factory=EnrichmentHooks)
    clock: Callable[[], int] = _now
    http_client: httpx.Client | None = None

    @property
    def owner_attributed(self) -> bool:
        """所有組織による取り込みか（owner_fields を記録するか）."""
        return self.owner is not None and self.owner.startswith("org-")

    def product_id_for(self, code: str) -> str:
        return f"{self.owner}/{code}" if self.owner else code

    def tag_lc(self, entity: ProductEntity) -> str:
        """タグ解釈に使う言語（import_lc が指定されていればそちらを優先）."""
        return self.options.import_lc or entity.lc or "en"


_PATH_KEYS = {"images_dir", "images_rules_file", "images_download_dir"}
_SOURCE_KEYS = {
    "id": "source_id",
    "name": "source_name",
    "url": "source_url",
    "licence": "licence",
    "licence_url": "licence_url",
    "manufacturer": "manufacturer",
}


def _parse_source(data: Any) -> SourceAttribution:
    if not isinstance(data, dict):
        raise ConfigurationError(f"'source' must be a mapping, got {type(data).__name__}")

    unknown = set(data) - set(_SOURCE_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown source keys: {sorted(unknown)}")

    kwargs = {_SOURCE_KEYS[k]: v for k, v in data.items()}
    for required in ("source_id", "source_name", "source_url"):
        kwargs.setdefault(required, "")
    return SourceAttribution(**kwargs)


def options_from_mapping(data: Mapping[str, Any]) -> ImportOptions:
    """辞書から ImportOptions を作成し検証する.

    Raises:
        ConfigurationError: 未知のキー、型不正、帰属情報不足の場合
    """
    valid_keys = {f.name for f in fields(ImportOptions)}
    unknown = set(data) - valid_keys
    if unknown:
        raise ConfigurationError(f"Unknown import option(s): {sorted(unknown)}. Valid options: {sorted(valid_keys)}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if key == "source":
            kwargs[key] = _parse_source(value)
        elif key in _PATH_KEYS:
            kwargs[key] = Path(value)
        elif key == "global_values":
            if not isinstance(value, dict):
                raise ConfigurationError("'global_values' must be a mapping of column name to value")
            kwargs[key] = {str(k): str(v) for k, v in value.items()}
        elif key == "extra_product_fields":
            kwargs[key] = tuple(str(v) for v in value)
        elif key == "skip_if_not_code":
            kwargs[key] = str(value)
        else:
            kwargs[key] = value

    options = ImportOptions(**kwargs)
    options.validate()
    return options


def load_import_options(config_path: Path | str) -> ImportOptions:
    """YAMLファイルからインポート設定を読み込む.

    Args:
        config_path: 設定YAMLファイルのパス

    Returns:
        検証済みの ImportOptions

    Raises:
        ConfigurationError: ファイルが無い、YAMLが不正、設定が不正な場合
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Import config not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in import config: {config_path}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Import config must contain a mapping, got {type(data).__name__}")

    options = options_from_mapping(data)
    logger.info(f"Loaded import options from {config_path}")
    return options
