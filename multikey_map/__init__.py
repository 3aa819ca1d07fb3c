"""
multikey_map - 参照カウント付きマルチキーマップ

複数のキー（エイリアス）が 1 つの共有値を指せるコンテナ。
値は最後のエイリアスが削除されるまで保持される。

Usage:
    from multikey_map import MultiKeyMap

    m = MultiKeyMap()
    m.insert("a", 1)
    m.alias("a", "b")
    m.remove("a")     # → None（b がまだ参照している）
    m.get("b")        # → 1
"""

from .config import (
    IntegrityPolicy,
    MultiKeyMapSettings,
    get_default_settings,
    load_settings,
    reset_default_settings,
)
from .entry import Entry, OccupiedEntry, VacantEntry
from .errors import (
    DanglingAliasError,
    IntegrityError,
    MultiKeyMapError,
    SlotIdExhaustedError,
    StaleSlotError,
)
from .iterators import PairIterator
from .map import AliasResult, IntegrityViolation, MultiKeyMap, SlotRef
from .slot_id import SLOT_ID_MAX, SlotId, SlotIdAllocator
from .synchronized import SynchronizedMultiKeyMap

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MultiKeyMap",
    "SlotRef",
    "AliasResult",
    "IntegrityViolation",
    "Entry",
    "OccupiedEntry",
    "VacantEntry",
    "PairIterator",
    "SynchronizedMultiKeyMap",
    "SlotId",
    "SlotIdAllocator",
    "SLOT_ID_MAX",
    "IntegrityPolicy",
    "MultiKeyMapSettings",
    "load_settings",
    "get_default_settings",
    "reset_default_settings",
    "MultiKeyMapError",
    "SlotIdExhaustedError",
    "StaleSlotError",
    "DanglingAliasError",
    "IntegrityError",
]
