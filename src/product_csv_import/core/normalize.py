"""入力値の正規化（セル → マージ用の値）.

取り込み行の各セル、バーコード、数量表記、包装者コード、栄養素値を
マージ処理が比較・保存できる形に変換する関数群です。

設計方針:
    - どの正規化も冪等にする（正規化済みの値を再度通しても変わらない）
    - 単位表記は単語境界で判定し、"grapes" や "gallon" のような語を壊さない
    - 正規化は「入力 → 保存値」の変換に限定し、既存値は比較時にだけ正規化する
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping

_MARKUP = re.compile(r"<[^>]*>")
_VALID_CODE = re.compile(r"^\d{8,}$")
_LANGUAGE_CODE = re.compile(r"^[a-z]{2}$")
_NON_DIGITS = re.compile(r"\D")
_NON_WORD = re.compile(r"[\W_]+")

# 数量 / 内容量
_MULTIPACK = re.compile(r"(\d)\s*x\s*(\d)", re.IGNORECASE)
_GRAM = re.compile(r"(\d)\s?(?:grammes|gramme|gr|g)(?![a-z])\.?", re.IGNORECASE)
_MILLILITRE = re.compile(r"(\d)\s?(?:millilitres|millilitre|ml)(?![a-z])\.?", re.IGNORECASE)
_LITRE = re.compile(r"(?<![a-z])(?:litres|litre|liters|liter)(?![a-z])", re.IGNORECASE)
_KILOGRAM = re.compile(r"(?<![a-z])(?:kilogrammes|kilogramme|kgs)(?![a-z])", re.IGNORECASE)
_DECIMAL_ZERO = re.compile(r"(\d)\.0 (?=[^\d\s])")

# 包装者コード（フランスの衛生マーク: FR 12.345.678 EC）
_FR_PACKAGER = re.compile(
    r"^(?:EMB\s*)?FR\s*[-.]?\s*(\d{2}|2A|2B|97\d)\s*[-.]?\s*(\d{3})\s*[-.]?\s*(\d{3})\s*[-.]?\s*(?:CE|EC)?$",
    re.IGNORECASE,
)
_EMB_PACKAGER = re.compile(r"^EMB\s*(\d{5}[A-Z]?)$", re.IGNORECASE)

# 栄養素値の修飾子（先に長い演算子を判定する）
_NUTRIENT_MODIFIERS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?:&lt;=|<=|≤)\s?"), "≤"),
    (re.compile(r"(?:&gt;=|>=|≥)\s?"), "≥"),
    (
        re.compile(r"(?:&lt;|<|\bmaximum\b|\bmaxi\b|\bmax\b|\binférieur à\b|\binferieur a\b|\bless than\b)\s?", re.I),
        "<",
    ),
    (re.compile(r"(?:&gt;|>|\bminimum\b|\bmini\b|\bmin\b|\bgreater than\b|\bmore than\b)\s?", re.I), ">"),
    (re.compile(r"(?:\benviron\b|\benv\.?|\babout\b|~|≈)\s?", re.I), "~"),
]
_TRACES = re.compile(r"^\s*traces?\s*$", re.IGNORECASE)
_NAN = re.compile(r"^\s*nan\s*$", re.IGNORECASE)

_NUTRIENT_UNITS = {
    "kj": "kJ",
    "kcal": "kcal",
    "kg": "kg",
    "g": "g",
    "mg": "mg",
    "mcg": "µg",
    "µg": "µg",
    "ug": "µg",
    "l": "l",
    "dl": "dl",
    "cl": "cl",
    "ml": "ml",
    "%": "%",
    "% vol": "% vol",
    "%vol": "% vol",
    "iu": "IU",
}


def sanitize_cell(value: object) -> str | None:
    """セル値からマークアップ（<...>）と前後の空白を除去する.

    Args:
        value: 入力セル（None は欠損として扱う）

    Returns:
        整形済み文字列（欠損の場合は None）
    """
    if value is None:
        return None
    s = _MARKUP.sub("", str(value))
    return s.strip()


def sanitize_row(row: Mapping[str, object]) -> dict[str, str | None]:
    """行の全セルを sanitize_cell() で整形する（列名も前後空白を除去）."""
    return {str(key).strip(): sanitize_cell(value) for key, value in row.items()}


def is_blank(value: object) -> bool:
    """None / 空文字 / 空白のみを「値なし」と判定する."""
    return value is None or str(value).strip() == ""


def ean_checksum(code: str) -> int:
    """EAN/GTIN のチェックディジット検証値を返す（0 なら正しい）."""
    total = 0
    for i, ch in enumerate(reversed(code)):
        digit = int(ch)
        total += digit * 3 if i % 2 == 1 else digit
    return total % 10


def normalize_code(code: str | None) -> str:
    """バーコードを数字列に正規化する.

    - 数字以外は除去する
    - 12桁の UPC で、先頭に 0 を付けると正しい EAN-13 になる場合は 0 を付与する
    - 13桁より長い場合は先頭の 0 を除去する（ただし13桁未満にはしない）

    Examples:
        >>> normalize_code(" 3 017620 422003 ")
        '3017620422003'
        >>> normalize_code("00003017620422003")
        '3017620422003'
    """
    if code is None:
        return ""

    digits = _NON_DIGITS.sub("", str(code))

    if len(digits) == 12 and ean_checksum("0" + digits) == 0:
        digits = "0" + digits

    if len(digits) > 13 and digits.startswith("0"):
        digits = digits.lstrip("0").rjust(13, "0")

    return digits


def is_valid_code(code: str) -> bool:
    """正規化済みコードが8桁以上の数字列か判定する."""
    return bool(_VALID_CODE.match(code))


def is_valid_language_code(lc: str | None) -> bool:
    """2文字の言語コードか判定する."""
    return lc is not None and bool(_LANGUAGE_CODE.match(lc))


def get_fileid(text: str) -> str:
    """タグ文字列を識別子（tag id）に畳み込む.

    小文字化・アクセント除去を行い、英数字以外の連続を "-" に置換します。

    Examples:
        >>> get_fileid("Crème Fraîche")
        'creme-fraiche'
        >>> get_fileid("  Coca_Cola ")
        'coca-cola'
    """
    s = unicodedata.normalize("NFKD", text)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.lower()
    s = _NON_WORD.sub("-", s)
    return s.strip("-")


def normalize_quantity(value: str) -> str:
    """数量（quantity / serving_size）の単位表記を正規化する.

    Examples:
        >>> normalize_quantity("6x90g")
        '6 x 90 g'
        >>> normalize_quantity("28.0 grammes")
        '28 g'
        >>> normalize_quantity("1 Litre")
        '1 l'
    """
    s = value.strip()
    s = _MULTIPACK.sub(r"\1 x \2", s)
    s = _GRAM.sub(r"\1 g", s)
    s = _MILLILITRE.sub(r"\1 ml", s)
    s = _LITRE.sub("l", s)
    s = _KILOGRAM.sub("kg", s)
    s = _DECIMAL_ZERO.sub(r"\1 ", s)
    return s.strip()


def _normalize_packager_code(code: str) -> str:
    s = " ".join(code.split()).upper()
    if not s:
        return ""

    m = _FR_PACKAGER.match(s)
    if m:
        return f"FR {m.group(1)}.{m.group(2)}.{m.group(3)} EC"

    m = _EMB_PACKAGER.match(s)
    if m:
        return f"EMB {m.group(1)}"

    return s


def normalize_packager_codes(codes: str) -> str:
    """包装者コード（emb_codes）のカンマ区切り文字列を正規化する.

    Examples:
        >>> normalize_packager_codes("fr 56-068-003 ce, emb56068")
        'FR 56.068.003 EC, EMB 56068'
    """
    parts = [_normalize_packager_code(p) for p in codes.split(",")]
    return ", ".join(p for p in parts if p)


def normalize_nutrient_value_and_modifier(value: str) -> tuple[str, str | None]:
    """栄養素の生値から修飾子（<, ≤, ~ など）を分離し、数値表記を整える.

    Args:
        value: 入力セルの値（例: "< 0,5", "traces", "12.3"）

    Returns:
        (value, modifier) のタプル。値が無い場合 value は空文字。

    Examples:
        >>> normalize_nutrient_value_and_modifier("< 0,5")
        ('0.5', '<')
        >>> normalize_nutrient_value_and_modifier("traces")
        ('0', '~')
    """
    s = value.strip()

    if _NAN.match(s):
        return "", None

    if _TRACES.match(s):
        return "0", "~"

    modifier: str | None = None
    for pattern, symbol in _NUTRIENT_MODIFIERS:
        if pattern.search(s):
            s = pattern.sub("", s, count=1)
            modifier = symbol
            break

    s = s.strip()
    if "." not in s:
        s = s.replace(",", ".", 1)

    return s, modifier


def normalize_nutrient_unit(unit: str | None) -> str | None:
    """栄養素の単位表記を正規化する（未知の単位はそのまま返す）."""
    if unit is None:
        return None
    s = " ".join(unit.split())
    if not s:
        return None
    return _NUTRIENT_UNITS.get(s.lower(), s)
