"""TSV読み込みアダプタ（ヘッダ修復付き）.

UTF-8 のタブ区切りテキストを、すべての列を文字列として読み込みます。
"""

from pathlib import Path

import polars as pl
from loguru import logger

from .base_adapter import REQUIRED_COLUMNS, BaseAdapter

_BOM = "\ufeff"


class TSV_Adapter(BaseAdapter):
    """タブ区切りの商品データファイルを読むアダプタ.

    Args:
        file_path: TSVファイルのパス

    Raises:
        FileNotFoundError: ファイルが存在しない場合
    """

    def __init__(self, file_path: Path | str) -> None:
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"TSV file not found: {self.file_path}")

    def read(self) -> pl.DataFrame:
        """TSVファイルを読み込む.

        Returns:
            ヘッダ修復済みの Polars DataFrame（全列 String）

        Raises:
            ValueError: 読み込みに失敗した場合
        """
        try:
            df = pl.read_csv(
                self.file_path,
                separator="\t",
                infer_schema_length=0,
                quote_char=None,
                truncate_ragged_lines=True,
            )
        except Exception as e:
            raise ValueError(f"Failed to read TSV: {self.file_path}") from e

        df = self.repair(df)
        logger.info(f"Read {len(df)} rows, {len(df.columns)} columns from {self.file_path}")
        return df

    def validate(self, df: pl.DataFrame) -> bool:
        """データ整合性検証（必須列の存在確認）."""
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            logger.error(f"Missing required column(s) {missing} in {self.file_path}")
            return False
        return True

    def repair(self, df: pl.DataFrame) -> pl.DataFrame:
        """ヘッダ名の前後空白と BOM を除去し、名前の無い列を削除する."""
        renames: dict[str, str] = {}
        drops: list[str] = []
        for column in df.columns:
            name = column.lstrip(_BOM).strip()
            if name == "":
                drops.append(column)
            elif name != column:
                renames[column] = name

        if drops:
            logger.debug(f"Dropping {len(drops)} unnamed column(s) from {self.file_path}")
            df = df.drop(drops)
        if renames:
            df = df.rename(renames)
        return df
