"""
errors.py - エラーコード体系と例外クラス

エラーコード形式: MKMAP-{カテゴリ}-{3桁番号}
カテゴリ: SLOT, INT

存在しないキーは例外ではなく None で表現する。
ここで定義する例外は、識別子空間の枯渇・内部整合性違反など
呼び出し側で回復できない状態のみを表す。

設計原則:
- stdlib のみに依存（循環参照を作らない）
- 状態を持たない
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any, Optional


# ======================================================================
# エラーコード形式
# ======================================================================

# MKMAP-{CATEGORY(2-5大文字)}-{3桁番号}
ERROR_CODE_PATTERN = re.compile(r'^MKMAP-[A-Z]{2,5}-\d{3}$')


class ErrorCategory(enum.Enum):
    """エラーカテゴリ。

    SLOT: スロット識別子・スロット参照
    INT:  テーブル間の整合性
    """

    SLOT = "SLOT"
    INT = "INT"


@dataclass(frozen=True)
class ErrorCode:
    """エラーコード定数。

    Attributes:
        code: MKMAP-{CAT}-{NNN} 形式のコード文字列。
        template: ``str.format()`` 対応のメッセージテンプレート。
        category: 所属カテゴリ。
    """

    code: str
    template: str
    category: Optional[ErrorCategory] = None

    def __post_init__(self) -> None:
        if not ERROR_CODE_PATTERN.match(self.code):
            raise ValueError(
                f"Invalid error code format: {self.code!r}. "
                f"Expected pattern: MKMAP-{{CATEGORY}}-{{NNN}}"
            )

    def format(self, **kwargs: Any) -> str:
        try:
            return self.template.format(**kwargs)
        except (KeyError, IndexError):
            return self.template


# ======================================================================
# エラーコード定数
# ======================================================================

SLOT_ID_EXHAUSTED = ErrorCode(
    code="MKMAP-SLOT-001",
    template="Slot identifier space exhausted (next={next_value})",
    category=ErrorCategory.SLOT,
)

STALE_SLOT = ErrorCode(
    code="MKMAP-SLOT-002",
    template="Slot {slot_id!r} no longer exists",
    category=ErrorCategory.SLOT,
)

DANGLING_ALIAS = ErrorCode(
    code="MKMAP-INT-001",
    template="Alias {key!r} references missing slot {slot_id!r}",
    category=ErrorCategory.INT,
)

INTEGRITY_VIOLATION = ErrorCode(
    code="MKMAP-INT-002",
    template="MultiKeyMap integrity check failed ({count} violations)",
    category=ErrorCategory.INT,
)


# ======================================================================
# 例外クラス
# ======================================================================

class MultiKeyMapError(Exception):
    """multikey_map の全例外の基底クラス。

    Attributes:
        code: エラーコード文字列。
    """

    error_code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.code = self.error_code.code

    def __str__(self) -> str:
        return f"[{self.code}] {self.args[0]}"


class SlotIdExhaustedError(MultiKeyMapError):
    """128bit の識別子空間を使い切った場合に送出される。"""

    error_code = SLOT_ID_EXHAUSTED

    def __init__(self, next_value: int) -> None:
        self.next_value = next_value
        super().__init__(self.error_code.format(next_value=next_value))


class StaleSlotError(MultiKeyMapError, LookupError):
    """削除済みスロットを指す SlotRef にアクセスした場合に送出される。"""

    error_code = STALE_SLOT

    def __init__(self, slot_id: Any) -> None:
        self.slot_id = slot_id
        super().__init__(self.error_code.format(slot_id=slot_id))


class DanglingAliasError(MultiKeyMapError, LookupError):
    """STRICT ポリシーで、存在しないスロットを指すエイリアスに遭遇した場合に送出される。"""

    error_code = DANGLING_ALIAS

    def __init__(self, key: Any, slot_id: Any) -> None:
        self.key = key
        self.slot_id = slot_id
        super().__init__(self.error_code.format(key=key, slot_id=slot_id))


class IntegrityError(MultiKeyMapError):
    """assert_integrity() が違反を検出した場合に送出される。"""

    error_code = INTEGRITY_VIOLATION

    def __init__(self, violations: list) -> None:
        self.violations = list(violations)
        super().__init__(self.error_code.format(count=len(self.violations)))
