"""
map.py - 参照カウント付きマルチキーマップ

複数のキー（エイリアス）が 1 つの共有値を指せるキー・値コンテナ。
値の寿命は参照カウントで管理し、最後のエイリアスが消えた時点で削除する。

構成:
- エイリアステーブル: key -> SlotId
- グループテーブル:   SlotId -> _Slot(count, value)
- SlotIdAllocator:    再利用しない単調増加カウンタ

全ての公開操作は、まずエイリアステーブルでキーを SlotId に解決し、
その SlotId でグループテーブルを読み書きする。

Usage:
    m = MultiKeyMap()
    m.insert("a", 1)
    m.alias("a", "b")          # a と b が同じ値を共有（count=2）
    m.insert("a", 3)           # a は共有グループから切り離される（detach）
    m.get("a")                 # → 3
    m.get("b")                 # → 1

    m.insert_many(["x", "y"], 10)
    m.remove("x")              # → None（y がまだ参照している）
    m.remove("y")              # → 10

スレッドセーフではない。複数スレッドから使う場合は
SynchronizedMultiKeyMap を使うこと。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    KeysView,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .config import IntegrityPolicy, MultiKeyMapSettings, get_default_settings
from .errors import DanglingAliasError, IntegrityError, StaleSlotError
from .iterators import PairIterator
from .slot_id import SlotId, SlotIdAllocator

if TYPE_CHECKING:
    from .entry import Entry


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# データクラス
# ---------------------------------------------------------------------------

@dataclass
class _Slot:
    """グループテーブルの 1 エントリ。count は参照しているエイリアス数。"""
    count: int
    value: Any


@dataclass(frozen=True)
class IntegrityViolation:
    """check_integrity() が検出した不整合"""
    kind: str  # "dangling_alias" | "count_mismatch" | "orphan_slot" | "future_slot_id"
    slot_id: SlotId
    key: Any = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "slot_id": int(self.slot_id),
            "key": self.key,
            "detail": self.detail,
        }


class SlotRef(Generic[V]):
    """
    1 つのスロットの値への可変ビュー

    同じグループの全エイリアスが同じ値を見るため、
    set() による書き換えは全エイリアスに反映される。
    スロットが削除された後にアクセスすると StaleSlotError。
    """

    __slots__ = ("_owner", "_slot_id")

    def __init__(self, owner: MultiKeyMap, slot_id: SlotId) -> None:
        self._owner = owner
        self._slot_id = slot_id

    @property
    def slot_id(self) -> SlotId:
        return self._slot_id

    @property
    def alive(self) -> bool:
        return self._slot_id in self._owner._data

    def _record(self) -> _Slot:
        record = self._owner._data.get(self._slot_id)
        if record is None:
            raise StaleSlotError(self._slot_id)
        return record

    def get(self) -> V:
        return self._record().value

    def set(self, value: V) -> V:
        """値を置き換え、直前の値を返す"""
        record = self._record()
        previous = record.value
        record.value = value
        return previous

    def modify(self, func: Callable[[V], V]) -> V:
        """func(現在値) の戻り値で置き換え、新しい値を返す"""
        record = self._record()
        record.value = func(record.value)
        return record.value

    @property
    def value(self) -> V:
        return self.get()

    @value.setter
    def value(self, new_value: V) -> None:
        self.set(new_value)

    def __repr__(self) -> str:
        if not self.alive:
            return f"SlotRef({self._slot_id!r}, stale)"
        return f"SlotRef({self._slot_id!r}, value={self.get()!r})"


@dataclass
class AliasResult(Generic[K, V]):
    """
    alias() / alias_many() の結果

    失敗時（基準キーが存在しない）は例外を送出せず、
    渡されたキー（またはキーのリスト）をそのまま rejected に返す。
    """
    ok: bool
    ref: Optional[SlotRef[V]] = None
    rejected: Any = None

    def __bool__(self) -> bool:
        return self.ok

    @property
    def value(self) -> Optional[V]:
        return self.ref.get() if self.ref is not None else None


# ---------------------------------------------------------------------------
# MultiKeyMap
# ---------------------------------------------------------------------------

class MultiKeyMap(Generic[K, V]):
    """
    参照カウント付きマルチキーマップ

    Args:
        groups: (keys, value) の iterable。順に insert_many() される。
        default_factory: or_default() で使う値のファクトリ
        settings: MultiKeyMapSettings（None ならデフォルト設定）
        integrity_policy: settings より優先される整合性ポリシー
    """

    def __init__(
        self,
        groups: Optional[Iterable[Tuple[Iterable[K], V]]] = None,
        *,
        default_factory: Optional[Callable[[], V]] = None,
        settings: Optional[MultiKeyMapSettings] = None,
        integrity_policy: Optional[Union[IntegrityPolicy, str]] = None,
    ) -> None:
        self._keys: Dict[K, SlotId] = {}
        self._data: Dict[SlotId, _Slot] = {}
        self._ids = SlotIdAllocator()
        self.default_factory = default_factory

        if integrity_policy is not None:
            self._policy = IntegrityPolicy.parse(integrity_policy)
        else:
            self._policy = (settings or get_default_settings()).integrity_policy

        if groups is not None:
            for keys, value in groups:
                self.insert_many(keys, value)

    @classmethod
    def from_groups(
        cls,
        groups: Iterable[Tuple[Iterable[K], V]],
        **kwargs: Any,
    ) -> MultiKeyMap[K, V]:
        """(keys, value) の列から構築する。後のエントリは insert_many() の規則で前のエントリを上書きする。"""
        return cls(groups, **kwargs)

    @property
    def integrity_policy(self) -> IntegrityPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------

    def _on_dangling(self, key: Any, slot_id: SlotId, op: str) -> None:
        if self._policy is IntegrityPolicy.STRICT:
            raise DanglingAliasError(key, slot_id)
        logger.warning(
            "Alias %r references missing slot %r during %s; treating as absent",
            key, slot_id, op,
        )

    def _record_for(self, key: Any, op: str) -> Optional[_Slot]:
        """キーを解決する。未登録なら None、ダングリングならポリシーに従う。"""
        slot_id = self._keys.get(key)
        if slot_id is None:
            return None
        record = self._data.get(slot_id)
        if record is None:
            self._on_dangling(key, slot_id, op)
        return record

    def _detach(self, key: Any) -> Tuple[bool, Any]:
        """
        key を現在のグループから外し、エイリアスを削除する

        Returns:
            (グループが削除されたか, 削除されたグループの値)
        """
        slot_id = self._keys.pop(key, None)
        if slot_id is None:
            return False, None
        record = self._data.get(slot_id)
        if record is None:
            logger.debug("Dropped dangling alias %r (slot %r)", key, slot_id)
            return False, None
        if record.count <= 1:
            del self._data[slot_id]
            logger.debug("Deleted slot %r with its last alias %r", slot_id, key)
            return True, record.value
        record.count -= 1
        return False, None

    def _attach_new(self, key: Any, value: Any) -> SlotId:
        """新しいスロットを割り当て、key をその唯一の所有者にする"""
        slot_id = self._ids.allocate()
        self._detach(key)
        self._data[slot_id] = _Slot(1, value)
        self._keys[key] = slot_id
        return slot_id

    def _join(self, key: Any, slot_id: SlotId, record: _Slot) -> None:
        """key を既存グループに参加させる（既に参加済みなら何もしない）"""
        current = self._keys.get(key)
        if current == slot_id:
            return
        if current is not None:
            logger.debug("Re-pointing alias %r from slot %r to %r", key, current, slot_id)
        self._detach(key)
        self._keys[key] = slot_id
        record.count += 1

    def _take(self, key: Any) -> Tuple[bool, Any]:
        if key not in self._keys:
            return False, None
        self._record_for(key, "remove")
        return self._detach(key)

    @staticmethod
    def _key_list(keys: Iterable[K], op: str) -> List[K]:
        if isinstance(keys, (str, bytes)):
            raise TypeError(f"{op}() expects a sequence of keys, not {type(keys).__name__}")
        return list(keys)

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    def contains_key(self, key: Any) -> bool:
        return key in self._keys

    def get(self, key: Any, default: Optional[V] = None) -> Optional[V]:
        """キーの値を返す。未登録（またはダングリング）なら default。"""
        record = self._record_for(key, "get")
        if record is None:
            return default
        return record.value

    def get_mut(self, key: Any) -> Optional[SlotRef[V]]:
        """キーの値への SlotRef を返す。未登録なら None。"""
        record = self._record_for(key, "get_mut")
        if record is None:
            return None
        return SlotRef(self, self._keys[key])

    def slot_id_of(self, key: Any) -> Optional[SlotId]:
        return self._keys.get(key)

    def ref_count(self, key: Any) -> int:
        """key のグループの参照カウント（未登録・ダングリングなら 0）"""
        slot_id = self._keys.get(key)
        if slot_id is None:
            return 0
        record = self._data.get(slot_id)
        return record.count if record is not None else 0

    def group_keys(self, key: Any) -> List[K]:
        """key と同じスロットを指す全エイリアス（key 自身を含む）"""
        slot_id = self._keys.get(key)
        if slot_id is None:
            return []
        return [k for k, sid in self._keys.items() if sid == slot_id]

    def group_count(self) -> int:
        return len(self._data)

    def is_empty(self) -> bool:
        return not self._keys

    # ------------------------------------------------------------------
    # 挿入・エイリアス
    # ------------------------------------------------------------------

    def insert(self, key: K, value: V) -> Optional[V]:
        """
        key に値を設定する

        - key が未登録: 新しいスロットを割り当てる。None を返す。
        - key が唯一の所有者: 同じスロットで値を上書きし、直前の値を返す。
        - key が共有グループの一員: key をグループから切り離し（count-1）、
          新しいスロットに割り当てる。共有値は他のエイリアスに残るため None を返す。
        """
        record = self._record_for(key, "insert")
        if record is not None and record.count <= 1:
            previous = record.value
            record.value = value
            return previous

        if record is not None:
            logger.debug(
                "Detaching %r from shared slot %r (%d aliases remain)",
                key, self._keys[key], record.count - 1,
            )
        self._attach_new(key, value)
        return None

    def alias(self, key: Any, new_key: K) -> AliasResult[K, V]:
        """
        new_key を key と同じグループに加える

        key が存在しない場合は何も変更せず、new_key を rejected に返す。
        new_key が別のグループに属していた場合は、先にそのグループから外す。

        Returns:
            AliasResult（成功時は共有値への SlotRef を持つ）
        """
        record = self._record_for(key, "alias")
        if record is None:
            return AliasResult(ok=False, rejected=new_key)
        self._record_for(new_key, "alias")

        slot_id = self._keys[key]
        self._join(new_key, slot_id, record)
        return AliasResult(ok=True, ref=SlotRef(self, slot_id))

    def alias_many(self, key: Any, new_keys: Iterable[K]) -> AliasResult[K, V]:
        """alias() のバッチ版。失敗時は new_keys オブジェクトをそのまま rejected に返す。"""
        record = self._record_for(key, "alias_many")
        if record is None:
            return AliasResult(ok=False, rejected=new_keys)

        keys = self._key_list(new_keys, "alias_many")
        for new_key in keys:
            self._record_for(new_key, "alias_many")

        slot_id = self._keys[key]
        for new_key in keys:
            self._join(new_key, slot_id, record)
        return AliasResult(ok=True, ref=SlotRef(self, slot_id))

    def insert_many(self, keys: Iterable[K], value: V) -> List[V]:
        """
        value を新しいスロットに格納し、keys 全てをそのスロットに向ける

        各キーは元のグループから外される。元のグループの唯一の所有者だった
        キーは、そのグループを削除して値を bumped に追加した上で、
        新しいスロットに向け直す。同じキーが複数回現れても 1 回として数える。

        Returns:
            削除されたグループの値のリスト（keys の順）
        """
        key_list = self._key_list(keys, "insert_many")
        if not key_list:
            logger.debug("insert_many() called with no keys; value discarded")
            return []
        for key in key_list:
            self._record_for(key, "insert_many")

        slot_id = self._ids.allocate()
        record = _Slot(0, value)
        self._data[slot_id] = record

        bumped: List[V] = []
        for key in key_list:
            if self._keys.get(key) == slot_id:
                continue
            removed, old_value = self._detach(key)
            if removed:
                logger.debug("insert_many() evicted sole-owned value of %r", key)
                bumped.append(old_value)
            self._keys[key] = slot_id
            record.count += 1
        return bumped

    # ------------------------------------------------------------------
    # 削除
    # ------------------------------------------------------------------

    def remove(self, key: Any) -> Optional[V]:
        """
        key を削除する

        グループの唯一の所有者ならグループごと削除して値を返す。
        他にエイリアスが残る場合は count を減らすだけで None を返す。
        """
        return self._take(key)[1]

    def remove_many(self, keys: Iterable[Any]) -> List[V]:
        """各キーに remove() を適用し、実際に削除された値を順に返す"""
        removed_values: List[V] = []
        for key in self._key_list(keys, "remove_many"):
            removed, value = self._take(key)
            if removed:
                removed_values.append(value)
        return removed_values

    def clear(self) -> None:
        """全エントリを削除する。SlotId カウンタはリセットしない。"""
        self._keys.clear()
        self._data.clear()

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def entry(self, key: K) -> Entry[K, V]:
        """
        key を 1 回だけ解決し、OccupiedEntry または VacantEntry を返す

        ダングリングエイリアスは（LENIENT ポリシーでは）Vacant として扱う。
        """
        from .entry import OccupiedEntry, VacantEntry

        record = self._record_for(key, "entry")
        if record is not None:
            return OccupiedEntry(self, key, self._keys[key])
        return VacantEntry(self, key)

    # ------------------------------------------------------------------
    # イテレーション
    # ------------------------------------------------------------------

    def iter(self) -> PairIterator[K, V]:
        """エイリアスごとに (key, value) を返す。共有値はエイリアスの数だけ現れる。"""
        return PairIterator(self)

    items = iter

    def keys(self) -> KeysView[K]:
        return self._keys.keys()

    def values(self) -> Iterator[V]:
        return (value for _, value in PairIterator(self))

    def values_mut(self) -> Iterator[SlotRef[V]]:
        for key, slot_id in self._keys.items():
            if slot_id not in self._data:
                self._on_dangling(key, slot_id, "values_mut")
                continue
            yield SlotRef(self, slot_id)

    def into_keys(self) -> List[K]:
        """全キーを返し、マップを空にする"""
        keys = list(self._keys)
        self.clear()
        return keys

    def into_values(self) -> List[V]:
        """全値（エイリアスごと）を返し、マップを空にする"""
        values = list(self.values())
        self.clear()
        return values

    # ------------------------------------------------------------------
    # 整合性検査
    # ------------------------------------------------------------------

    def check_integrity(self) -> List[IntegrityViolation]:
        """エイリアステーブルとグループテーブルの整合性を検査する（例外は送出しない）"""
        violations: List[IntegrityViolation] = []
        counts: Dict[SlotId, int] = {}

        for key, slot_id in self._keys.items():
            if slot_id not in self._data:
                violations.append(IntegrityViolation("dangling_alias", slot_id, key=key))
            else:
                counts[slot_id] = counts.get(slot_id, 0) + 1

        next_value = self._ids.next_value
        for slot_id, record in self._data.items():
            actual = counts.get(slot_id, 0)
            if actual == 0:
                violations.append(IntegrityViolation(
                    "orphan_slot", slot_id, detail=f"count={record.count}",
                ))
            elif actual != record.count:
                violations.append(IntegrityViolation(
                    "count_mismatch", slot_id,
                    detail=f"count={record.count}, aliases={actual}",
                ))
            if int(slot_id) >= next_value:
                violations.append(IntegrityViolation(
                    "future_slot_id", slot_id, detail=f"next={next_value}",
                ))
        return violations

    def assert_integrity(self) -> None:
        violations = self.check_integrity()
        if violations:
            raise IntegrityError(violations)

    # ------------------------------------------------------------------
    # コピー・dunder
    # ------------------------------------------------------------------

    def copy(self) -> MultiKeyMap[K, V]:
        """テーブルを複製する。値そのものは共有（浅いコピー）。"""
        clone = type(self)(
            default_factory=self.default_factory,
            integrity_policy=self._policy,
        )
        clone._keys = dict(self._keys)
        clone._data = {sid: _Slot(r.count, r.value) for sid, r in self._data.items()}
        clone._ids = self._ids.copy()
        return clone

    __copy__ = copy

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[K]:
        return iter(self._keys)

    def __getitem__(self, key: K) -> V:
        if key not in self._keys:
            raise KeyError(key)
        record = self._record_for(key, "__getitem__")
        if record is None:
            raise KeyError(key)
        return record.value

    def __setitem__(self, key: K, value: V) -> None:
        self.insert(key, value)

    def __delitem__(self, key: K) -> None:
        if key not in self._keys:
            raise KeyError(key)
        self.remove(key)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{k!r}: {v!r}" for k, v in PairIterator(self, quiet=True))
        return f"{type(self).__name__}({{{pairs}}})"
