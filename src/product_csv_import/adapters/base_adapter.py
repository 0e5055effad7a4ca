"""入力ソースアダプタ（基底クラス）.

取り込み元の表形式データを共通インターフェースで扱うための抽象基底クラスを定義します。
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

import polars as pl

# 1行分の入力（列名 → セル文字列、欠損は None）
ImportRow = dict[str, str | None]

REQUIRED_COLUMNS = ("code",)


class BaseAdapter(ABC):
    """入力ソースアダプタの基底クラス.

    全てのアダプタはこのクラスを継承し、read()/validate()/repair() を実装します。
    rows() は read() の結果を ImportRow として順に返す。
    """

    @abstractmethod
    def read(self) -> pl.DataFrame:
        """データソースを読み込み、全列を文字列として持つ Polars DataFrame に変換する.

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            ValueError: データ形式が不正な場合
        """
        ...

    @abstractmethod
    def validate(self, df: pl.DataFrame) -> bool:
        """データ整合性を検証する."""
        ...

    @abstractmethod
    def repair(self, df: pl.DataFrame) -> pl.DataFrame:
        """壊れたデータを修復する（必要なら）."""
        ...

    def rows(self) -> Iterator[ImportRow]:
        """検証済みの行を ImportRow として返す.

        Raises:
            ValueError: 必須列が無い場合
        """
        df = self.read()
        if not self.validate(df):
            raise ValueError(f"Invalid input data: required columns {list(REQUIRED_COLUMNS)}")
        yield from df.iter_rows(named=True)
