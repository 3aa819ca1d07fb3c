"""
slot_id.py - スロット識別子と単調増加アロケータ

値グループ（スロット）を識別する不透明なトークンを提供する。

設計原則:
- 識別子は 128bit 符号なし整数をラップする
- 割り当てごとに厳密に増加し、削除後も再利用しない
- 上限に達したら巻き戻さず SlotIdExhaustedError を送出する
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import SlotIdExhaustedError


SLOT_ID_BITS = 128
SLOT_ID_MAX = (1 << SLOT_ID_BITS) - 1


@dataclass(frozen=True, order=True)
class SlotId:
    """1 つの値グループを識別する不変トークン。"""

    value: int

    def __post_init__(self) -> None:
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise TypeError(f"SlotId value must be int, got {type(self.value).__name__}")
        if self.value < 0 or self.value > SLOT_ID_MAX:
            raise ValueError(f"SlotId value out of range: {self.value}")

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"SlotId({self.value})"


class SlotIdAllocator:
    """
    SlotId の単調増加アロケータ

    カウンタは減算されない。clear() などでテーブルが空になっても
    リセットしないため、古い参照と新しいスロットが衝突することはない。
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0 or start > SLOT_ID_MAX + 1:
            raise ValueError(f"allocator start out of range: {start}")
        self._next = start

    @property
    def next_value(self) -> int:
        """次に払い出される整数値（払い出しは行わない）"""
        return self._next

    def allocate(self) -> SlotId:
        """
        新しい SlotId を払い出す

        Returns:
            直前の払い出しより大きい SlotId

        Raises:
            SlotIdExhaustedError: 128bit 空間を使い切った場合
        """
        if self._next > SLOT_ID_MAX:
            raise SlotIdExhaustedError(self._next)
        slot_id = SlotId(self._next)
        self._next += 1
        return slot_id

    def copy(self) -> SlotIdAllocator:
        return SlotIdAllocator(self._next)

    def __repr__(self) -> str:
        return f"SlotIdAllocator(next={self._next})"
