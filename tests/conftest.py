"""共通フィクスチャ（インメモリのストアと画像サービス）."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from product_csv_import.core.config import ImportContext, ImportOptions, SourceAttribution
from product_csv_import.core.database import InMemoryProductStore
from product_csv_import.core.exceptions import UploadError
from product_csv_import.core.interfaces import ImageService

FIXED_TIME = 1_700_000_000


class FakeImageService(ImageService):
    """アップロード順に画像 id を採番する画像サービス.

    同じファイルを再度アップロードした場合は同じ id を返す。
    """

    def __init__(self, reject: set[str] | None = None) -> None:
        self.next_id = 1
        self.ids: dict[str, int] = {}
        self.uploads: list[tuple[str, str]] = []
        self.selections: list[tuple[str, str, int]] = []
        self.reject = reject or set()

    def upload(self, product_id: str, path: Path) -> int:
        if Path(path).name in self.reject:
            raise UploadError(f"rejected {path}")
        self.uploads.append((product_id, str(path)))
        key = str(path)
        if key not in self.ids:
            self.ids[key] = self.next_id
            self.next_id += 1
        return self.ids[key]

    def select_crop(self, product_id: str, slot: str, image_id: int) -> None:
        self.selections.append((product_id, slot, image_id))


def make_source() -> SourceAttribution:
    return SourceAttribution(
        source_id="acme",
        source_name="ACME Foods",
        source_url="https://acme.example/",
        licence="ODbL",
    )


@pytest.fixture
def store() -> InMemoryProductStore:
    return InMemoryProductStore()


@pytest.fixture
def image_service() -> FakeImageService:
    return FakeImageService()


@pytest.fixture
def make_context(store: InMemoryProductStore) -> Callable[..., ImportContext]:
    """ImportContext を作るファクトリ（キーワード引数は ImportOptions に渡す）."""

    def _make(*, owner: str | None = None, images: ImageService | None = None, **options: Any) -> ImportContext:
        options.setdefault("source", make_source())
        return ImportContext(
            store=store,
            options=ImportOptions(**options),
            user_id="importer",
            owner=owner,
            images=images,
            clock=lambda: FIXED_TIME,
        )

    return _make


@pytest.fixture
def context(make_context: Callable[..., ImportContext]) -> ImportContext:
    return make_context()
