"""
iterators.py - (key, value) ペアのイテレータ

エイリアステーブルの 1 エントリにつき 1 ペアを返す。
2 つのキーが同じグループを共有していれば、同じ値が 2 回現れる。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, Iterator, Tuple, TypeVar

if TYPE_CHECKING:
    from .map import MultiKeyMap


K = TypeVar("K")
V = TypeVar("V")


class PairIterator(Generic[K, V]):
    """
    遅延・有限の (key, value) イテレータ

    再利用はできない。もう一度走査するには MultiKeyMap.iter() で作り直す。
    スロットが見つからないエイリアスはマップの整合性ポリシーに従い
    スキップ（LENIENT）または DanglingAliasError（STRICT）となる。
    quiet=True の場合はポリシーを参照せず黙ってスキップする（repr 用）。
    イテレーション中にマップを変更すると RuntimeError になる。
    """

    def __init__(self, owner: MultiKeyMap[K, V], quiet: bool = False) -> None:
        self._owner = owner
        self._entries = iter(owner._keys.items())
        self._remaining = len(owner._keys)
        self._quiet = quiet

    def __iter__(self) -> Iterator[Tuple[K, V]]:
        return self

    def __next__(self) -> Tuple[K, V]:
        for key, slot_id in self._entries:
            self._remaining -= 1
            record = self._owner._data.get(slot_id)
            if record is None:
                if not self._quiet:
                    self._owner._on_dangling(key, slot_id, "iter")
                continue
            return key, record.value
        raise StopIteration

    def __length_hint__(self) -> int:
        """未走査のエイリアス数（ダングリングを含む上限値）"""
        return max(self._remaining, 0)
