"""Product import exceptions.

インポート処理で使うカスタム例外クラスを定義します。

致命的なのは ConfigurationError のみで、それ以外は「その行をスキップ」
「その画像をスキップ」に縮退させる前提です。
"""


class ProductImportError(Exception):
    """インポート関連例外の基底クラス."""


class ConfigurationError(ProductImportError):
    """バッチ開始前に検出される致命的な設定エラー.

    画像ディレクトリが存在しない/開けない、images.rules の行が不正、
    ソース帰属情報が不足している、などの場合に送出します。
    """


class RowValidationError(ProductImportError):
    """入力行の検証エラー（行はスキップされ、バッチは継続する）.

    Attributes:
        row_number: 入力ファイル内の行番号（ヘッダを除き1始まり）
        code: 正規化後のバーコード（空の場合もある）
    """

    def __init__(self, message: str, *, row_number: int, code: str = "") -> None:
        self.row_number = row_number
        self.code = code
        super().__init__(f"row {row_number} (code={code!r}): {message}")


class MergeSkip(ProductImportError):
    """意図的なポリシースキップ（エラーではない）.

    Attributes:
        reason: スキップ理由（統計カウンタのキーとして使う）
        code: 正規化後のバーコード
    """

    def __init__(self, reason: str, *, code: str = "") -> None:
        self.reason = reason
        self.code = code
        super().__init__(f"skipped ({reason}): {code}")


class ImageFetchError(ProductImportError):
    """リモート画像の取得失敗（ネットワーク障害、2xx以外の応答）."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__(f"Failed to fetch image {url}: {detail}")


class ImageReadError(ProductImportError):
    """キャッシュ済み画像ファイルが読めない/壊れている."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Unreadable image file {path}: {detail}")


class UploadError(ProductImportError):
    """画像サービスがアップロードまたは選択を拒否した."""


class PersistenceError(ProductImportError):
    """プロダクトストアへの保存失敗."""
