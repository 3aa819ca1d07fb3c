"""
synchronized.py - MultiKeyMap のスレッドセーフラッパー

MultiKeyMap は内部で同期しない。insert の上書き/切り離し分岐のように
2 つのテーブルにまたがる複合操作はキー単位のロックに分解できないため、
マップ全体を 1 つの RLock で保護する。

Usage:
    shared = SynchronizedMultiKeyMap()
    shared.insert("a", 1)
    shared.alias("a", "b")

    # 複数操作をまとめて実行する場合
    with shared.locked() as m:
        m.entry("hits").or_insert(0).modify(lambda n: n + 1)
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Generator, Generic, Iterable, List, Optional, Tuple, TypeVar

from .map import AliasResult, IntegrityViolation, MultiKeyMap

K = TypeVar("K")
V = TypeVar("V")


class SynchronizedMultiKeyMap(Generic[K, V]):
    """
    MultiKeyMap 全体を 1 つの RLock で保護するラッパー

    各公開メソッドは実行中ずっとロックを保持する。
    イテレーション系のメソッドはロック下で取ったスナップショット（list）を返す。
    Entry ハンドルは locked() の中でのみ取得できる。

    alias() が返す AliasResult.ref はロックの外で使うと同期されない。
    値を書き換えるには update() / replace() か locked() を使うこと。
    """

    def __init__(self, inner: Optional[MultiKeyMap[K, V]] = None, **kwargs: Any) -> None:
        self._inner: MultiKeyMap[K, V] = inner if inner is not None else MultiKeyMap(**kwargs)
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Generator[MultiKeyMap[K, V], None, None]:
        """ロックを保持したまま内部の MultiKeyMap を渡す"""
        with self._lock:
            yield self._inner

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    def contains_key(self, key: Any) -> bool:
        with self._lock:
            return self._inner.contains_key(key)

    def get(self, key: Any, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._inner.get(key, default)

    def ref_count(self, key: Any) -> int:
        with self._lock:
            return self._inner.ref_count(key)

    def group_count(self) -> int:
        with self._lock:
            return self._inner.group_count()

    def keys(self) -> List[K]:
        with self._lock:
            return list(self._inner.keys())

    def values(self) -> List[V]:
        with self._lock:
            return list(self._inner.values())

    def items(self) -> List[Tuple[K, V]]:
        with self._lock:
            return list(self._inner.iter())

    def check_integrity(self) -> List[IntegrityViolation]:
        with self._lock:
            return self._inner.check_integrity()

    def snapshot(self) -> MultiKeyMap[K, V]:
        """ロック下で複製した MultiKeyMap を返す"""
        with self._lock:
            return self._inner.copy()

    # ------------------------------------------------------------------
    # 変更
    # ------------------------------------------------------------------

    def insert(self, key: K, value: V) -> Optional[V]:
        with self._lock:
            return self._inner.insert(key, value)

    def alias(self, key: Any, new_key: K) -> AliasResult[K, V]:
        with self._lock:
            return self._inner.alias(key, new_key)

    def alias_many(self, key: Any, new_keys: Iterable[K]) -> AliasResult[K, V]:
        with self._lock:
            return self._inner.alias_many(key, new_keys)

    def insert_many(self, keys: Iterable[K], value: V) -> List[V]:
        with self._lock:
            return self._inner.insert_many(keys, value)

    def remove(self, key: Any) -> Optional[V]:
        with self._lock:
            return self._inner.remove(key)

    def remove_many(self, keys: Iterable[Any]) -> List[V]:
        with self._lock:
            return self._inner.remove_many(keys)

    def update(self, key: Any, func: Callable[[V], object]) -> bool:
        """
        ロック下で func(現在値) を呼び、値をその場で変更する

        func の戻り値は使わない。値を置き換えるには replace() を使うこと。

        Returns:
            key が存在して func を呼んだ場合 True
        """
        with self._lock:
            ref = self._inner.get_mut(key)
            if ref is None:
                return False
            func(ref.get())
            return True

    def replace(self, key: Any, func: Callable[[V], V]) -> bool:
        """
        key の値を func(現在値) の戻り値で置き換える

        Returns:
            key が存在して置き換えた場合 True
        """
        with self._lock:
            ref = self._inner.get_mut(key)
            if ref is None:
                return False
            ref.modify(func)
            return True

    def clear(self) -> None:
        with self._lock:
            self._inner.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._inner)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._inner

    def __repr__(self) -> str:
        with self._lock:
            return f"{type(self).__name__}({self._inner!r})"
