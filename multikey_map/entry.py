"""
entry.py - Occupied / Vacant エントリハンドル

MultiKeyMap.entry(key) が返す、1 つのキーに対する解決済みビュー。
2 回目の検索なしで「無ければ挿入」「有れば変更」を行える。

Usage:
    counter = m.entry("hits").or_insert(0)
    counter.modify(lambda n: n + 1)

    m.entry("tags").and_modify(lambda tags: tags.append("new")).or_insert_with(list)

    m.entry("total").and_replace(lambda n: n + 1).or_insert(1)

ハンドルは短命であることを前提とする。ハンドル取得後に
マップを直接変更した場合の動作は保証しない。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Generic, Optional, Tuple, TypeVar

from .errors import StaleSlotError
from .map import SlotRef
from .slot_id import SlotId

if TYPE_CHECKING:
    from .map import MultiKeyMap


K = TypeVar("K")
V = TypeVar("V")

logger = logging.getLogger(__name__)


class Entry(Generic[K, V]):
    """OccupiedEntry / VacantEntry の共通基底"""

    __slots__ = ("_map", "_key")

    is_occupied: bool = False

    def __init__(self, owner: MultiKeyMap[K, V], key: K) -> None:
        self._map = owner
        self._key = key

    def key(self) -> K:
        return self._key

    def and_modify(self, func: Callable[[V], object]) -> Entry[K, V]:
        """
        Occupied なら func(現在値) を呼んで値をその場で変更する

        func の戻り値は使わない（list.append などの破壊的メソッドをそのまま渡せる）。
        Vacant の場合は何もしない。どちらの場合も self を返す。
        """
        return self

    def and_replace(self, func: Callable[[V], V]) -> Entry[K, V]:
        """Occupied なら func(現在値) の戻り値で値を置き換える。Vacant なら何もしない。"""
        return self

    def _or_insert_with_key(self, factory: Callable[[K], V]) -> SlotRef[V]:
        raise NotImplementedError

    def or_insert(self, value: V) -> SlotRef[V]:
        return self._or_insert_with_key(lambda _key: value)

    def or_insert_with(self, factory: Callable[[], V]) -> SlotRef[V]:
        """Vacant の場合のみ factory() を呼んで挿入する"""
        return self._or_insert_with_key(lambda _key: factory())

    def or_insert_with_key(self, factory: Callable[[K], V]) -> SlotRef[V]:
        """Vacant の場合のみ factory(key) を呼んで挿入する"""
        return self._or_insert_with_key(factory)

    def or_default(self, factory: Optional[Callable[[], V]] = None) -> SlotRef[V]:
        """
        Vacant の場合はデフォルト値を挿入する

        Args:
            factory: デフォルト値のファクトリ。None ならマップの default_factory。

        Raises:
            TypeError: Vacant で、どちらのファクトリも無い場合
        """
        def _default(_key: K) -> V:
            default_factory = factory or self._map.default_factory
            if default_factory is None:
                raise TypeError(
                    f"or_default() needs a factory for key {self._key!r}: "
                    "pass one or set MultiKeyMap.default_factory"
                )
            return default_factory()

        return self._or_insert_with_key(_default)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._key!r})"


class OccupiedEntry(Entry[K, V]):
    """既存エイリアスに解決されたエントリ"""

    __slots__ = ("_slot_id",)

    is_occupied = True

    def __init__(self, owner: MultiKeyMap[K, V], key: K, slot_id: SlotId) -> None:
        super().__init__(owner, key)
        self._slot_id = slot_id

    @property
    def slot_id(self) -> SlotId:
        return self._slot_id

    def and_modify(self, func: Callable[[V], object]) -> Entry[K, V]:
        func(self.get())
        return self

    def and_replace(self, func: Callable[[V], V]) -> Entry[K, V]:
        self.get_mut().modify(func)
        return self

    def _or_insert_with_key(self, factory: Callable[[K], V]) -> SlotRef[V]:
        return self.into_mut()

    def get(self) -> V:
        record = self._map._data.get(self._slot_id)
        if record is None:
            raise StaleSlotError(self._slot_id)
        return record.value

    def get_mut(self) -> SlotRef[V]:
        return SlotRef(self._map, self._slot_id)

    def into_mut(self) -> SlotRef[V]:
        return SlotRef(self._map, self._slot_id)

    def remove(self) -> Optional[V]:
        """参照カウントに従う削除（MultiKeyMap.remove と同じ）"""
        return self._map.remove(self._key)

    def remove_entry(self) -> Tuple[K, Optional[V]]:
        """
        参照カウントを無視してスロットを削除し、このエイリアスだけを外す

        同じグループの他のエイリアスは存在しないスロットを指したまま残る。
        共有値を安全に外すには remove() を使うこと。

        Returns:
            (key, グループの値。スロットが既に無ければ None)
        """
        record = self._map._data.pop(self._slot_id, None)
        self._map._keys.pop(self._key, None)
        if record is None:
            return self._key, None
        if record.count > 1:
            logger.warning(
                "remove_entry(%r) deleted slot %r still referenced by %d other aliases",
                self._key, self._slot_id, record.count - 1,
            )
        return self._key, record.value


class VacantEntry(Entry[K, V]):
    """未登録キーのエントリ。挿入までキーを保持する。"""

    __slots__ = ()

    def _or_insert_with_key(self, factory: Callable[[K], V]) -> SlotRef[V]:
        return self.insert(factory(self._key))

    def into_key(self) -> K:
        return self._key

    def insert(self, value: V) -> SlotRef[V]:
        """新しい単独所有のスロットに value を格納する"""
        slot_id = self._map._attach_new(self._key, value)
        return SlotRef(self._map, slot_id)

