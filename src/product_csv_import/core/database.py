"""プロダクトストアの実装.

- InMemoryProductStore: 辞書ベース（テスト、ドライラン用）
- SqliteProductStore: SQLite に JSON ドキュメントとして保存する

注意:
    PRAGMA のうち、cache_size / temp_store などは接続単位の設定です。
    DBファイルへ恒久的に「書き込まれる設定」ではない点に注意してください。
"""

from __future__ import annotations

import copy
import json
import sqlite3
import time
from collections.abc import Iterable, Iterator
from pathlib import Path

from loguru import logger

from .exceptions import PersistenceError
from .interfaces import ProductStore
from .models import ProductEntity

PERSISTENT_PRAGMAS = [
    "PRAGMA journal_mode = WAL;",  # 読み取り並行性
    "PRAGMA synchronous = NORMAL;",
]
CONNECTION_PRAGMAS = [
    "PRAGMA cache_size = -64000;",  # 64MB cache
    "PRAGMA temp_store = MEMORY;",
    "PRAGMA foreign_keys = ON;",
]

REQUIRED_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_products_code ON PRODUCTS(code);",
    "CREATE INDEX IF NOT EXISTS idx_products_owner ON PRODUCTS(owner);",
    "CREATE INDEX IF NOT EXISTS idx_history_product ON PRODUCT_HISTORY(product_id);",
]

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS PRODUCTS (
        product_id TEXT NOT NULL PRIMARY KEY,
        code TEXT NOT NULL,
        owner TEXT NULL,
        document TEXT NOT NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS PRODUCT_HISTORY (
        history_id INTEGER NOT NULL PRIMARY KEY,
        product_id TEXT NOT NULL,
        message TEXT NOT NULL,
        stored_at INTEGER NOT NULL,
        FOREIGN KEY(product_id) REFERENCES PRODUCTS(product_id)
    );
    """,
]


class InMemoryProductStore(ProductStore):
    """辞書ベースのプロダクトストア.

    load / store はどちらもディープコピーを扱うため、呼び出し側が保存後に
    エンティティを変更してもストアの内容は変わらない。

    Attributes:
        history: (product_id, message) の保存履歴
    """

    def __init__(self, products: Iterable[ProductEntity] = ()) -> None:
        self._products: dict[str, ProductEntity] = {}
        self.history: list[tuple[str, str]] = []
        for entity in products:
            self._products[entity.product_id] = copy.deepcopy(entity)

    def __len__(self) -> int:
        return len(self._products)

    def load(self, product_id: str) -> ProductEntity | None:
        entity = self._products.get(product_id)
        return copy.deepcopy(entity) if entity is not None else None

    def store(self, entity: ProductEntity, message: str) -> None:
        self._products[entity.product_id] = copy.deepcopy(entity)
        self.history.append((entity.product_id, message))
        logger.debug(f"Stored product {entity.product_id}: {message}")

    def find_by_owner(self, owner: str) -> Iterator[ProductEntity]:
        for product_id in sorted(self._products):
            entity = self._products[product_id]
            if entity.owner == owner:
                yield copy.deepcopy(entity)


class SqliteProductStore(ProductStore):
    """SQLite を使った JSON ドキュメントストア.

    Args:
        db_path: データベースファイルパス（無ければ作成する）
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        is_new = not self.db_path.exists()
        if is_new:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Creating product database: {self.db_path}")

        self._conn = sqlite3.connect(self.db_path)
        try:
            if is_new:
                # DB作成時にのみ有効な設定
                self._conn.execute("PRAGMA page_size = 4096;")
                for pragma in PERSISTENT_PRAGMAS:
                    self._conn.execute(pragma)
            for pragma in CONNECTION_PRAGMAS:
                self._conn.execute(pragma)
            for stmt in SCHEMA_SQL:
                self._conn.executescript(stmt)
            for index_sql in REQUIRED_INDEXES:
                self._conn.execute(index_sql)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.close()
            raise PersistenceError(f"Failed to open product database {self.db_path}: {e}") from e

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SqliteProductStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def load(self, product_id: str) -> ProductEntity | None:
        row = self._conn.execute(
            "SELECT document FROM PRODUCTS WHERE product_id = ?",
            (product_id,),
        ).fetchone()
        if row is None:
            return None
        return ProductEntity.from_dict(json.loads(row[0]))

    def store(self, entity: ProductEntity, message: str) -> None:
        now = int(time.time())
        document = json.dumps(entity.to_dict(), ensure_ascii=False, sort_keys=True)
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO PRODUCTS (product_id, code, owner, document, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(product_id) DO UPDATE SET
                        document = excluded.document,
                        owner = excluded.owner,
                        updated_at = excluded.updated_at
                    """,
                    (entity.product_id, entity.code, entity.owner, document, now),
                )
                self._conn.execute(
                    "INSERT INTO PRODUCT_HISTORY (product_id, message, stored_at) VALUES (?, ?, ?)",
                    (entity.product_id, message, now),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to store product {entity.product_id}: {e}")
            raise PersistenceError(f"Failed to store product {entity.product_id}: {e}") from e

        logger.debug(f"Stored product {entity.product_id}: {message}")

    def find_by_owner(self, owner: str) -> Iterator[ProductEntity]:
        cursor = self._conn.execute(
            "SELECT document FROM PRODUCTS WHERE owner = ? ORDER BY product_id",
            (owner,),
        )
        for (document,) in cursor.fetchall():
            yield ProductEntity.from_dict(json.loads(document))

    def messages(self, product_id: str) -> list[str]:
        """保存メッセージの履歴を古い順に返す."""
        rows = self._conn.execute(
            "SELECT message FROM PRODUCT_HISTORY WHERE product_id = ? ORDER BY history_id",
            (product_id,),
        ).fetchall()
        return [message for (message,) in rows]
