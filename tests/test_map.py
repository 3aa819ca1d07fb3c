"""
test_map.py - MultiKeyMap のテスト

対象: multikey_map/map.py

insert の上書き/切り離し（detach）の非対称性、エイリアスと参照カウント、
insert_many / remove_many、整合性ポリシーを検証する。
"""
from __future__ import annotations

import copy
import logging

import pytest

from multikey_map import (
    DanglingAliasError,
    IntegrityError,
    IntegrityPolicy,
    MultiKeyMap,
    MultiKeyMapSettings,
    SlotIdAllocator,
    StaleSlotError,
)


def _assert_counts_match(m: MultiKeyMap) -> None:
    """全グループの参照カウントがエイリアス数と一致すること"""
    assert m.check_integrity() == []
    for key in m.keys():
        assert m.ref_count(key) == len(m.group_keys(key))


# ===================================================================
# 基本操作
# ===================================================================

class TestBasics:

    def test_new_map_is_empty(self):
        m = MultiKeyMap()
        assert len(m) == 0
        assert m.is_empty()
        assert m.group_count() == 0
        assert list(m.iter()) == []

    def test_contains_key(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        assert m.contains_key("a")
        assert "a" in m
        assert not m.contains_key("b")

    def test_get_absent_returns_none(self):
        m = MultiKeyMap()
        assert m.get("missing") is None
        assert m.get("missing", 0) == 0

    def test_repeated_get_is_stable(self):
        m = MultiKeyMap()
        m.insert("a", [1, 2])
        assert m.get("a") == m.get("a")
        assert m.get("a") is m.get("a")

    def test_get_mut_writes_through(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        ref = m.get_mut("a")
        assert ref is not None
        assert ref.set(5) == 1
        assert m.get("a") == 5

    def test_get_mut_absent(self):
        assert MultiKeyMap().get_mut("a") is None


# ===================================================================
# insert: 上書き vs 切り離し
# ===================================================================

class TestInsert:

    def test_insert_new_returns_none(self):
        m = MultiKeyMap()
        assert m.insert("a", 1) is None
        assert m.get("a") == 1
        assert m.ref_count("a") == 1

    def test_sole_owner_overwrites_in_place(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        slot = m.slot_id_of("a")
        assert m.insert("a", 2) == 1
        assert m.get("a") == 2
        assert m.slot_id_of("a") == slot

    def test_shared_key_detaches(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        assert m.ref_count("a") == 2

        assert m.insert("a", 3) is None
        assert m.get("a") == 3
        assert m.get("b") == 1
        assert m.ref_count("a") == 1
        assert m.ref_count("b") == 1
        assert m.slot_id_of("a") != m.slot_id_of("b")
        _assert_counts_match(m)

    def test_detach_logs_debug(self, caplog):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        with caplog.at_level(logging.DEBUG, logger="multikey_map.map"):
            m.insert("b", 2)
        assert any("Detaching" in r.getMessage() for r in caplog.records)

    def test_setitem_and_getitem(self):
        m = MultiKeyMap()
        m["a"] = 1
        assert m["a"] == 1
        with pytest.raises(KeyError):
            m["b"]


# ===================================================================
# alias / alias_many
# ===================================================================

class TestAlias:

    def test_alias_shares_value(self):
        m = MultiKeyMap()
        m.insert("a", [1])
        result = m.alias("a", "b")
        assert result.ok
        assert result.ref.get() == [1]
        assert m.get("b") is m.get("a")
        assert m.ref_count("a") == 2

    def test_alias_ref_writes_to_all_aliases(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        result = m.alias("a", "b")
        result.ref.set(9)
        assert m.get("a") == 9
        assert m.get("b") == 9

    def test_alias_absent_base_fails_closed(self):
        m = MultiKeyMap()
        new_key = ("composite", "key")
        result = m.alias("missing", new_key)
        assert not result
        assert result.ok is False
        assert result.rejected is new_key
        assert result.ref is None
        assert m.is_empty()

    def test_alias_existing_key_in_other_group_detaches_it(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.insert("x", 10)
        m.alias("x", "y")
        m.alias("a", "y")
        assert m.get("y") == 1
        assert m.ref_count("x") == 1
        assert m.ref_count("a") == 2
        _assert_counts_match(m)

    def test_alias_sole_owner_drops_old_group(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.insert("b", 2)
        m.alias("a", "b")
        assert m.group_count() == 1
        assert m.get("b") == 1
        _assert_counts_match(m)

    def test_alias_same_group_is_noop(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        m.alias("a", "b")
        m.alias("b", "a")
        m.alias("a", "a")
        assert m.ref_count("a") == 2
        _assert_counts_match(m)

    def test_alias_many(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        result = m.alias_many("a", ["b", "c", "d"])
        assert result.ok
        assert result.value == 1
        assert m.ref_count("a") == 4
        assert sorted(m.group_keys("c")) == ["a", "b", "c", "d"]
        _assert_counts_match(m)

    def test_alias_many_duplicates_counted_once(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias_many("a", ["b", "b"])
        assert m.ref_count("a") == 2
        _assert_counts_match(m)

    def test_alias_many_failure_returns_same_list(self):
        m = MultiKeyMap()
        keys = ["b", "c"]
        result = m.alias_many("missing", keys)
        assert not result.ok
        assert result.rejected is keys
        assert keys == ["b", "c"]
        assert m.is_empty()

    def test_alias_many_rejects_plain_string(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        with pytest.raises(TypeError):
            m.alias_many("a", "bc")


# ===================================================================
# remove / remove_many
# ===================================================================

class TestRemove:

    def test_remove_absent(self):
        assert MultiKeyMap().remove("a") is None

    def test_remove_sole_owner_returns_value(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        assert m.remove("a") == 1
        assert not m.contains_key("a")
        assert m.group_count() == 0

    def test_remove_shared_keeps_value(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        assert m.remove("a") is None
        assert m.get("b") == 1
        assert m.ref_count("b") == 1
        assert m.remove("b") == 1
        assert m.is_empty()
        assert m.group_count() == 0

    def test_remove_many_collects_in_order(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.insert("b", 2)
        m.alias("b", "c")
        assert m.remove_many(["missing", "b", "a", "c"]) == [1, 2]
        assert m.is_empty()

    def test_remove_many_keeps_none_values(self):
        m = MultiKeyMap()
        m.insert("a", None)
        assert m.remove_many(["a"]) == [None]

    def test_delitem(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        del m["a"]
        assert "a" not in m
        with pytest.raises(KeyError):
            del m["a"]


# ===================================================================
# insert_many
# ===================================================================

class TestInsertMany:

    def test_basic_grouping(self):
        m = MultiKeyMap()
        assert m.insert_many(["x", "y"], 10) == []
        assert m.ref_count("x") == 2
        assert m.slot_id_of("x") == m.slot_id_of("y")
        assert m.remove("x") is None
        assert m.get("y") == 10
        assert m.remove("y") == 10

    def test_shared_key_moves_to_new_group(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        assert m.insert_many(["a", "c"], 2) == []
        assert m.get("a") == 2
        assert m.get("c") == 2
        assert m.get("b") == 1
        assert m.ref_count("a") == 2
        assert m.ref_count("b") == 1
        _assert_counts_match(m)

    def test_sole_owner_is_bumped_and_redirected(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        assert m.insert_many(["a"], 2) == [1]
        assert m.contains_key("a")
        assert m.get("a") == 2
        assert m.ref_count("a") == 1
        _assert_counts_match(m)

    def test_bumped_in_input_order(self):
        m = MultiKeyMap()
        m.insert("a", "A")
        m.insert("b", "B")
        m.insert("c", "C")
        m.alias("c", "d")
        assert m.insert_many(["b", "c", "a", "new"], 0) == ["B", "A"]
        assert m.ref_count("new") == 4
        assert m.get("d") == "C"
        _assert_counts_match(m)

    def test_duplicate_keys_counted_once(self):
        m = MultiKeyMap()
        m.insert_many(["x", "x", "y"], 1)
        assert m.ref_count("x") == 2
        _assert_counts_match(m)

    def test_empty_key_list_creates_nothing(self):
        m = MultiKeyMap()
        assert m.insert_many([], 1) == []
        assert m.group_count() == 0
        _assert_counts_match(m)

    def test_accepts_generator(self):
        m = MultiKeyMap()
        m.insert_many((k for k in "abc"), 1)
        assert len(m) == 3

    def test_rejects_plain_string(self):
        with pytest.raises(TypeError):
            MultiKeyMap().insert_many("ab", 1)


# ===================================================================
# 変換コンストラクタ
# ===================================================================

class TestFromGroups:

    def test_from_groups(self):
        m = MultiKeyMap.from_groups([(["a", "b"], 1), (["c"], 2)])
        assert m.get("a") == 1
        assert m.get("b") == 1
        assert m.get("c") == 2
        assert m.ref_count("a") == 2

    def test_later_groups_displace_earlier(self):
        m = MultiKeyMap((
            (["a", "b"], 1),
            (["b"], 2),
            (["a"], 3),
        ))
        assert m.get("a") == 3
        assert m.get("b") == 2
        assert m.group_count() == 2
        _assert_counts_match(m)

    def test_kwargs_forwarded(self):
        m = MultiKeyMap.from_groups([], integrity_policy="strict")
        assert m.integrity_policy is IntegrityPolicy.STRICT


# ===================================================================
# 参照カウント不変条件
# ===================================================================

class TestCountInvariant:

    def test_mixed_operations(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias_many("a", ["b", "c"])
        m.insert("b", 2)
        m.insert_many(["c", "d", "e"], 3)
        m.alias("d", "a")
        m.remove("e")
        m.entry("f").or_insert(4)
        m.remove_many(["a", "zzz"])
        _assert_counts_match(m)
        assert m.get("b") == 2
        assert m.get("c") == 3
        assert m.get("d") == 3
        assert m.get("f") == 4

    def test_contains_implies_get(self):
        m = MultiKeyMap()
        m.insert_many(["a", "b"], 0)
        m.alias("a", "c")
        m.insert("b", 1)
        for key in m.keys():
            assert m.get(key) is not None


# ===================================================================
# ビュー
# ===================================================================

class TestViews:

    def test_keys_and_values(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        m.insert("c", 2)
        assert sorted(m.keys()) == ["a", "b", "c"]
        assert sorted(m.values()) == [1, 1, 2]
        assert sorted(m) == ["a", "b", "c"]

    def test_values_mut(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.insert("b", 2)
        for ref in m.values_mut():
            ref.modify(lambda v: v * 10)
        assert m.get("a") == 10
        assert m.get("b") == 20

    def test_into_keys_empties_map(self):
        m = MultiKeyMap()
        m.insert_many(["a", "b"], 1)
        assert sorted(m.into_keys()) == ["a", "b"]
        assert m.is_empty()
        assert m.group_count() == 0

    def test_into_values_empties_map(self):
        m = MultiKeyMap()
        m.insert_many(["a", "b"], 1)
        m.insert("c", 2)
        assert sorted(m.into_values()) == [1, 1, 2]
        assert m.is_empty()

    def test_repr(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        assert repr(m) == "MultiKeyMap({'a': 1})"


# ===================================================================
# copy
# ===================================================================

class TestCopy:

    def test_copy_is_independent(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m.alias("a", "b")
        clone = m.copy()
        clone.insert("a", 2)
        clone.remove("b")
        assert m.get("a") == 1
        assert m.get("b") == 1
        assert m.ref_count("a") == 2

    def test_copy_keeps_counter(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        clone = copy.copy(m)
        clone.insert("b", 2)
        assert clone.slot_id_of("b") > clone.slot_id_of("a")

    def test_copy_shares_values_shallowly(self):
        m = MultiKeyMap()
        m.insert("a", [1])
        clone = m.copy()
        assert clone.get("a") is m.get("a")


# ===================================================================
# SlotRef
# ===================================================================

class TestSlotRef:

    def test_stale_ref_raises(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        ref = m.get_mut("a")
        m.remove("a")
        assert not ref.alive
        with pytest.raises(StaleSlotError):
            ref.get()
        with pytest.raises(LookupError):
            ref.set(2)

    def test_value_property(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        ref = m.get_mut("a")
        ref.value = 7
        assert ref.value == 7
        assert m["a"] == 7


# ===================================================================
# 整合性ポリシー（remove_entry によるダングリングエイリアス）
# ===================================================================

def _make_dangling(m: MultiKeyMap) -> None:
    """b が削除済みスロットを指す状態を作る"""
    m.insert("a", 1)
    m.alias("a", "b")
    m.entry("a").remove_entry()


class TestIntegrityPolicy:

    def test_default_policy_is_lenient(self):
        assert MultiKeyMap().integrity_policy is IntegrityPolicy.LENIENT

    def test_settings_policy(self):
        settings = MultiKeyMapSettings(integrity_policy=IntegrityPolicy.STRICT)
        assert MultiKeyMap(settings=settings).integrity_policy is IntegrityPolicy.STRICT

    def test_explicit_policy_wins_over_settings(self):
        settings = MultiKeyMapSettings(integrity_policy=IntegrityPolicy.STRICT)
        m = MultiKeyMap(settings=settings, integrity_policy="lenient")
        assert m.integrity_policy is IntegrityPolicy.LENIENT

    def test_env_policy_used_by_default(self, monkeypatch):
        monkeypatch.setenv("MKMAP_INTEGRITY_POLICY", "strict")
        assert MultiKeyMap().integrity_policy is IntegrityPolicy.STRICT

    def test_lenient_treats_dangling_as_absent(self, caplog):
        m = MultiKeyMap()
        _make_dangling(m)
        with caplog.at_level(logging.WARNING, logger="multikey_map.map"):
            assert m.contains_key("b")
            assert m.get("b") is None
            assert m.get_mut("b") is None
            assert m.ref_count("b") == 0
            assert list(m.iter()) == []
        assert any("missing slot" in r.getMessage() for r in caplog.records)

    def test_lenient_getitem_raises_keyerror(self):
        m = MultiKeyMap()
        _make_dangling(m)
        with pytest.raises(KeyError):
            m["b"]

    def test_lenient_insert_redirects(self):
        m = MultiKeyMap()
        _make_dangling(m)
        assert m.insert("b", 5) is None
        assert m.get("b") == 5
        _assert_counts_match(m)

    def test_lenient_remove_drops_alias(self):
        m = MultiKeyMap()
        _make_dangling(m)
        assert m.remove("b") is None
        assert not m.contains_key("b")
        _assert_counts_match(m)

    def test_lenient_alias_with_dangling_base_fails_closed(self):
        m = MultiKeyMap()
        _make_dangling(m)
        result = m.alias("b", "c")
        assert not result.ok
        assert result.rejected == "c"
        assert not m.contains_key("c")

    def test_lenient_entry_is_vacant(self):
        m = MultiKeyMap()
        _make_dangling(m)
        entry = m.entry("b")
        assert not entry.is_occupied
        entry.or_insert(3)
        assert m.get("b") == 3
        _assert_counts_match(m)

    def test_strict_raises_on_dangling(self):
        m = MultiKeyMap(integrity_policy=IntegrityPolicy.STRICT)
        _make_dangling(m)
        assert m.contains_key("b")
        with pytest.raises(DanglingAliasError) as exc_info:
            m.get("b")
        assert exc_info.value.key == "b"
        assert exc_info.value.code == "MKMAP-INT-001"
        with pytest.raises(DanglingAliasError):
            m.insert("b", 2)
        with pytest.raises(DanglingAliasError):
            m.remove("b")
        with pytest.raises(DanglingAliasError):
            list(m.iter())

    def test_strict_insert_many_validates_before_mutating(self):
        m = MultiKeyMap(integrity_policy="strict")
        _make_dangling(m)
        m.insert("c", 3)
        with pytest.raises(DanglingAliasError):
            m.insert_many(["c", "b"], 9)
        assert m.get("c") == 3
        assert m.group_count() == 1


class TestCheckIntegrity:

    def test_clean_map(self):
        m = MultiKeyMap()
        m.insert_many(["a", "b"], 1)
        assert m.check_integrity() == []
        m.assert_integrity()

    def test_reports_dangling_alias(self):
        m = MultiKeyMap()
        _make_dangling(m)
        violations = m.check_integrity()
        assert [v.kind for v in violations] == ["dangling_alias"]
        assert violations[0].key == "b"
        assert violations[0].to_dict()["kind"] == "dangling_alias"
        with pytest.raises(IntegrityError) as exc_info:
            m.assert_integrity()
        assert exc_info.value.violations == violations

    def test_reports_count_mismatch(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m._data[m.slot_id_of("a")].count = 3
        assert [v.kind for v in m.check_integrity()] == ["count_mismatch"]

    def test_reports_slot_id_ahead_of_allocator(self):
        m = MultiKeyMap()
        m.insert("a", 1)
        m._ids = SlotIdAllocator()
        violations = m.check_integrity()
        assert [v.kind for v in violations] == ["future_slot_id"]
        assert violations[0].slot_id == m.slot_id_of("a")
        assert violations[0].detail == "next=0"
