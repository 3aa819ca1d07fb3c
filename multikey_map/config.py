"""
config.py - MultiKeyMap の設定

整合性ポリシー（存在しないスロットを指すエイリアスの扱い）を
YAML 設定ファイルと環境変数から読み込む。

設定ファイル形式 (YAML):
    multikey_map:
      integrity_policy: lenient   # lenient | strict

環境変数:
    MKMAP_SETTINGS_FILE    - パス未指定時に読む設定ファイル
    MKMAP_INTEGRITY_POLICY - 設定ファイルの値を上書きする
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


SETTINGS_FILE_ENV = "MKMAP_SETTINGS_FILE"
INTEGRITY_POLICY_ENV = "MKMAP_INTEGRITY_POLICY"
SETTINGS_SECTION = "multikey_map"

logger = logging.getLogger(__name__)


class IntegrityPolicy(Enum):
    """ダングリングエイリアス（スロットが存在しないエイリアス）の扱い"""
    LENIENT = "lenient"   # 値なしとして扱い WARNING ログ（デフォルト）
    STRICT = "strict"     # DanglingAliasError を送出

    @classmethod
    def parse(cls, raw: Union[str, IntegrityPolicy]) -> IntegrityPolicy:
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            raise ValueError(f"integrity_policy must be a string, got {type(raw).__name__}")
        try:
            return cls(raw.strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Unknown integrity_policy {raw!r} (expected one of: {valid})"
            ) from None


@dataclass(frozen=True)
class MultiKeyMapSettings:
    integrity_policy: IntegrityPolicy = IntegrityPolicy.LENIENT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MultiKeyMapSettings:
        kwargs: Dict[str, Any] = {}
        if "integrity_policy" in data and data["integrity_policy"] is not None:
            kwargs["integrity_policy"] = IntegrityPolicy.parse(data["integrity_policy"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {"integrity_policy": self.integrity_policy.value}


def _read_settings_file(path: Path) -> Dict[str, Any]:
    """
    YAML 設定ファイルから multikey_map セクションを読む

    ファイルが存在しない場合は空 dict を返す。

    Raises:
        ValueError: YAML として解析できない、または形式が不正な場合
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("Settings file not found, using defaults: %s", path)
        return {}

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ValueError(f"Unable to parse settings file {path}: {e}") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError(
            f"Settings file {path} must contain a mapping, got {type(parsed).__name__}"
        )

    section = parsed.get(SETTINGS_SECTION, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(
            f"'{SETTINGS_SECTION}' section in {path} must be a mapping, "
            f"got {type(section).__name__}"
        )
    return section


def load_settings(path: Optional[Union[str, Path]] = None) -> MultiKeyMapSettings:
    """
    設定を読み込む

    優先順位: MKMAP_INTEGRITY_POLICY > 設定ファイル > デフォルト

    Args:
        path: 設定ファイルのパス。None の場合は MKMAP_SETTINGS_FILE を参照する。

    Returns:
        MultiKeyMapSettings
    """
    if path is None:
        env_path = os.environ.get(SETTINGS_FILE_ENV)
        if env_path:
            path = env_path

    data: Dict[str, Any] = {}
    if path is not None:
        data = dict(_read_settings_file(Path(path)))

    env_policy = os.environ.get(INTEGRITY_POLICY_ENV)
    if env_policy:
        data["integrity_policy"] = env_policy

    return MultiKeyMapSettings.from_dict(data)


# グローバルインスタンス
_default_settings: Optional[MultiKeyMapSettings] = None
_settings_lock = threading.Lock()


def get_default_settings() -> MultiKeyMapSettings:
    """キャッシュ済みのデフォルト設定を取得（初回のみ load_settings() を実行）"""
    global _default_settings
    if _default_settings is None:
        with _settings_lock:
            if _default_settings is None:
                _default_settings = load_settings()
    return _default_settings


def reset_default_settings(settings: Optional[MultiKeyMapSettings] = None) -> None:
    """デフォルト設定のキャッシュをリセット（テスト用）"""
    global _default_settings
    with _settings_lock:
        _default_settings = settings
