"""画像の探索と関連付け.

コードごとの「スロット名 → 画像の場所」マップを3つの情報源から組み立て、
画像サービスへアップロードしてスロットを選択する。

優先順位（後のものが上書き）:
    1. 画像ディレクトリの走査（images.rules によるファイル名書き換え、スロットごとに先勝ち）
    2. CSV の画像列（image_front / image_other などのカンマ区切りリスト、image_<slot>_file）
    3. CSV の URL 列（image_<slot>_url、ダウンロードしてローカルファイルにする）

images.rules の形式:
    # コメント
    <find正規表現>\t<replace>

    replace 内の `$1` / `${1}` はキャプチャグループの文字列に置換する（式の評価はしない）。
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger
from PIL import Image

from .config import ImportContext, ImportOptions
from .exceptions import ConfigurationError, ImageFetchError, ImageReadError, UploadError
from .interfaces import ImageService
from .models import ProductEntity, RowState
from .normalize import is_blank, normalize_code
from .schema import IMAGE_SLOTS, SELECTABLE_IMAGE_SLOTS

# コード → (スロット名 → ローカルパス or URL)
ImageMap = dict[str, dict[str, str]]

DEFAULT_RULES_FILENAME = "images.rules"
MIN_IMAGE_SIZE = 10000
REQUIRED_IMAGE_SLOTS = ("front", "ingredients")

IMAGE_FILE_PATTERN = re.compile(r"(\d+)(_|-|\.)?([^\.-]*)?((-|\.)(.*))?\.(jpg|jpeg|png)", re.IGNORECASE)

_RULE_LINE = re.compile(r"^([^\t]+)\t([^\t]+)")
_TEMPLATE_GROUP = re.compile(r"\$(?:\{(\d+)\}|(\d+))")
_FILE_COLUMN = re.compile(r"^image_((?:front|ingredients|nutrition|other)(?:_\w\w)?)_file")
_URL_COLUMN = re.compile(r"^image_(front|ingredients|nutrition|other)_url")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9\-_.]")
_SLOT_LANGUAGE = re.compile(r"_[a-z]{2}$")
_THUMBNAIL_PARAM = "thumb=true&"


def expand_template(template: str, match: re.Match[str]) -> str:
    """replace テンプレートの `$n` / `${n}` をキャプチャグループで置き換える.

    存在しないグループや一致しなかったグループは空文字になる。
    """

    def _group(m: re.Match[str]) -> str:
        index = int(m.group(1) or m.group(2))
        if index > match.re.groups:
            return ""
        return match.group(index) or ""

    return _TEMPLATE_GROUP.sub(_group, template)


@dataclass(frozen=True)
class ImageRule:
    """ファイル名書き換えルール（find は正規表現、replace はテンプレート）."""

    find: re.Pattern[str]
    replace: str

    def apply(self, filename: str) -> str:
        return self.find.sub(lambda m: expand_template(self.replace, m), filename)


def load_image_rules(rules_path: Path | str) -> list[ImageRule]:
    """images.rules を読み込む.

    Args:
        rules_path: ルールファイルのパス

    Returns:
        ファイル順のルールリスト

    Raises:
        ConfigurationError: ファイルが開けない、行の形式が不正、正規表現が不正な場合
    """
    rules_path = Path(rules_path)
    try:
        lines = rules_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ConfigurationError(f"Could not open {rules_path}: {e}") from e

    rules: list[ImageRule] = []
    for line_number, line in enumerate(lines, start=1):
        if line.startswith("#") or line == "":
            continue

        m = _RULE_LINE.match(line)
        if not m:
            raise ConfigurationError(f"Unrecognized line {line_number} in {rules_path}: {line!r}")

        find, replace = m.group(1), m.group(2)
        try:
            pattern = re.compile(find)
        except re.error as e:
            raise ConfigurationError(f"Invalid pattern on line {line_number} in {rules_path}: {find!r}") from e

        logger.debug(f"Adding image rule - find: {find} - replace: {replace}")
        rules.append(ImageRule(find=pattern, replace=replace))

    return rules


def resolve_rules_file(options: ImportOptions) -> Path | None:
    """使用するルールファイルを決める（明示指定 > images_dir/images.rules）."""
    if options.images_rules_file is not None:
        if not options.images_rules_file.exists():
            raise ConfigurationError(f"Image rules file not found: {options.images_rules_file}")
        return options.images_rules_file

    if options.images_dir is not None:
        candidate = options.images_dir / DEFAULT_RULES_FILENAME
        if candidate.exists():
            logger.debug(f"Found {DEFAULT_RULES_FILENAME} in {options.images_dir}")
            return candidate

    return None


def rewrite_filename(filename: str, rules: Iterable[ImageRule]) -> str:
    rewritten = filename
    for rule in rules:
        rewritten = rule.apply(rewritten)
    if rewritten != filename:
        logger.debug(f"Applied image rules: {filename} -> {rewritten}")
    return rewritten


def scan_images_dir(images_dir: Path | str, rules: Iterable[ImageRule] = ()) -> ImageMap:
    """画像ディレクトリを走査してコード/スロットごとの画像パスを得る.

    書き換え後のファイル名はスロット判定にだけ使い、マップには実ファイルのパスを入れる。
    同じ (code, slot) に複数ファイルがある場合は名前順で最初のものを採用する。

    Raises:
        ConfigurationError: ディレクトリが存在しない、開けない場合
    """
    images_dir = Path(images_dir)
    if not images_dir.is_dir():
        raise ConfigurationError(f"images_dir {images_dir} is not a directory")

    try:
        filenames = sorted(p.name for p in images_dir.iterdir())
    except OSError as e:
        raise ConfigurationError(f"Could not open images_dir {images_dir}: {e}") from e

    rules = list(rules)
    logger.info(f"Scanning images dir: {images_dir} ({len(filenames)} entries, {len(rules)} rules)")

    image_map: ImageMap = {}
    for filename in filenames:
        m = IMAGE_FILE_PATTERN.search(rewrite_filename(filename, rules))
        if not m:
            continue

        path = images_dir / filename
        if not path.is_file():
            continue
        size = path.stat().st_size
        if size < MIN_IMAGE_SIZE:
            logger.debug(f"Skipping too small image file {filename} ({size} bytes)")
            continue

        code = normalize_code(m.group(1))
        slot = m.group(3) or "front"
        logger.debug(f"Found image {filename}: code={code} slot={slot}")

        image_map.setdefault(code, {}).setdefault(slot, str(path))

    logger.info(f"Found images for {len(image_map)} products")
    return image_map


def apply_image_list_columns(row: Mapping[str, str | None], slots: dict[str, str]) -> None:
    """image_front / image_ingredients / image_nutrition / image_other 列を反映する.

    image_other の各ファイルは other_1, other_2, ... になる。front が無ければ最初の
    other が front も埋め、front/ingredients/nutrition と同じファイルの other は捨てる。
    """
    for slot in IMAGE_SLOTS:
        value = row.get(f"image_{slot}")
        if is_blank(value):
            continue

        k = 0
        for file in str(value).split(","):
            file = file.strip()
            if not file:
                continue
            if slot != "other":
                slots[slot] = file
                continue

            k += 1
            other_slot = f"other_{k}"
            slots[other_slot] = file
            slots.setdefault("front", file)
            if file in (slots.get("front"), slots.get("ingredients"), slots.get("nutrition")):
                del slots[other_slot]


def missing_required_slots(slots: Mapping[str, str]) -> list[str]:
    return [slot for slot in REQUIRED_IMAGE_SLOTS if slot not in slots]


def apply_image_file_columns(row: Mapping[str, str | None], slots: dict[str, str]) -> None:
    """image_<slot>_file 列（ローカルパス）を反映する."""
    for column in sorted(row):
        m = _FILE_COLUMN.match(column)
        if not m:
            continue
        value = row[column]
        if not is_blank(value):
            slots[m.group(1)] = str(value)


def image_cache_filename(url: str, code: str) -> str:
    """URL の最後のパス要素から安全なキャッシュファイル名を作る（コードが無ければ前置する）."""
    filename = _UNSAFE_FILENAME_CHARS.sub("_", url.rsplit("/", 1)[-1])
    if code not in filename:
        filename = f"{code}_{filename}"
    return filename


def verify_image_file(path: Path) -> None:
    """画像ファイルとして読めるか確認する.

    Raises:
        ImageReadError: 読めない、壊れている場合
    """
    try:
        with Image.open(path) as img:
            img.verify()
    except (OSError, SyntaxError, ValueError) as e:
        raise ImageReadError(str(path), str(e)) from e


def fetch_image(url: str, destination: Path, *, client: httpx.Client, timeout: float) -> Path:
    """画像をダウンロードしてレスポンスボディをそのまま保存する.

    Raises:
        ImageFetchError: 通信エラー、2xx 以外の応答
    """
    full_url = url.replace(_THUMBNAIL_PARAM, "", 1)
    logger.debug(f"Downloading image {full_url} -> {destination}")

    try:
        response = client.get(full_url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise ImageFetchError(full_url, str(e)) from e

    if not response.is_success:
        raise ImageFetchError(full_url, f"HTTP {response.status_code}")

    try:
        destination.write_bytes(response.content)
    except OSError as e:
        raise ImageFetchError(full_url, f"could not write {destination}: {e}") from e
    return destination


def download_url_image(url: str, code: str, context: ImportContext) -> Path | None:
    """URL 画像をダウンロードディレクトリに取得する（失敗時は None）.

    キャッシュ済みファイルが壊れていれば削除して1回だけ取り直す。
    """
    options = context.options
    download_dir = options.images_download_dir
    if download_dir is None:
        logger.warning("no image download dir specified")
        return None

    try:
        download_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create images_download_dir {download_dir}: {e}")
        return None

    file = download_dir / image_cache_filename(url, code)
    if file.exists():
        try:
            verify_image_file(file)
        except ImageReadError as e:
            logger.warning(f"{e}, downloading again")
            try:
                file.unlink()
            except OSError as err:
                logger.warning(f"Could not remove cached image {file}: {err}")
                return None
        else:
            logger.debug(f"Already downloaded image file {file}")
            return file

    try:
        if context.http_client is not None:
            return fetch_image(url, file, client=context.http_client, timeout=options.image_fetch_timeout)
        with httpx.Client() as client:
            return fetch_image(url, file, client=client, timeout=options.image_fetch_timeout)
    except ImageFetchError as e:
        logger.warning(str(e))
        return None


def apply_image_url_columns(
    row: Mapping[str, str | None],
    code: str,
    slots: dict[str, str],
    *,
    context: ImportContext,
) -> None:
    """image_<slot>_url[<suffix>] 列の画像をダウンロードして反映する.

    列名のスロット以降の部分はスロット名に付く（image_front_url_fr → front_fr）。
    """
    for column in sorted(row):
        m = _URL_COLUMN.match(column)
        if not m:
            continue
        url = row[column]
        if is_blank(url) or not str(url).startswith("http"):
            continue

        slot = m.group(1) + column[m.end() :]
        logger.debug(f"Image url for {code} {slot}: {url}")
        path = download_url_image(str(url), code, context)
        if path is not None:
            slots[slot] = str(path)


def slot_with_lc(slot: str, lc: str | None) -> str:
    """言語の付いていないスロット名にプロダクトの言語を付ける."""
    if _SLOT_LANGUAGE.search(slot) or not lc:
        return slot
    return f"{slot}_{lc}"


def _selectable(slot: str, entity: ProductEntity, context: ImportContext) -> bool:
    if slot.split("_", 1)[0] not in SELECTABLE_IMAGE_SLOTS:
        return False
    if context.options.only_select_not_existing_images:
        return slot not in entity.images
    return True


def _select(service: ImageService, entity: ProductEntity, slot: str, image_id: int) -> bool:
    try:
        service.select_crop(entity.product_id, slot, image_id)
    except UploadError as e:
        logger.warning(f"Could not select image {image_id} for {entity.code} {slot}: {e}")
        return False
    entity.images[slot] = {"imgid": image_id}
    return True


def associate_images(
    entity: ProductEntity,
    slots: Mapping[str, str],
    *,
    context: ImportContext,
    state: RowState,
) -> bool:
    """画像をアップロードしてスロットに選択する.

    フィールドの変更有無に関係なく、マージ結果の保存判定の後に毎行呼ばれる。
    新しい画像 ID とスロット選択は entity.images と行の来歴に書き込まれるので、
    戻り値が True なら呼び出し側でプロダクトを保存し直す。

    Args:
        entity: 対象プロダクト（images はメモリ上で更新する）
        slots: スロット名 → ローカルパス
        context: 実行コンテキスト（images が None またはドライランならアップロードしない）
        state: 行の作業状態

    Returns:
        新しい画像 ID が追加されたか、スロットの選択が変わった場合 True
    """
    if not slots:
        logger.debug(f"No images for product {entity.code}")
        state.flag("products_without_images")
        return False

    state.flag("products_with_images")

    if context.options.dry_run or context.images is None:
        logger.debug(f"Not uploading {len(slots)} images for {entity.code}")
        return False

    service = context.images
    changed = False
    for slot in sorted(slots):
        path = Path(slots[slot])
        if not path.exists():
            logger.debug(f"Did not find image file {path} for {entity.code} {slot}")
            continue

        current_max = entity.max_image_id()
        target_slot = slot_with_lc(slot, entity.lc)

        try:
            image_id = service.upload(entity.product_id, path)
        except UploadError as e:
            logger.warning(f"Image upload rejected for {entity.code} {slot}: {e}")
            continue

        logger.debug(f"Uploaded {path} for {entity.code}: imgid={image_id}")
        is_new = image_id > 0 and image_id > current_max
        if is_new:
            state.flag("products_images_added")
            state.image_ids.append(image_id)
            entity.images[str(image_id)] = {"imgid": image_id}
            changed = True
            if state.provenance is not None:
                state.provenance.images.append(image_id)

        if not _selectable(target_slot, entity, context):
            continue

        if is_new:
            logger.debug(f"Selecting image {image_id} for {entity.code} {target_slot}")
            changed = _select(service, entity, target_slot, image_id) or changed
            continue

        selected = entity.images.get(target_slot)
        if image_id > 0 and selected is not None and selected.get("imgid") != image_id:
            logger.debug(f"Re-selecting image {image_id} for {entity.code} {target_slot}")
            changed = _select(service, entity, target_slot, image_id) or changed

    return changed
