"""
conftest.py - テスト共通 fixture
"""
from __future__ import annotations

import pytest

from multikey_map import config as _config


@pytest.fixture(autouse=True)
def _clean_env_vars(monkeypatch):
    """テスト間で環境変数が漏れないようにする"""
    for var in (
        _config.SETTINGS_FILE_ENV,
        _config.INTEGRITY_POLICY_ENV,
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_default_settings():
    """各テスト前後でキャッシュ済みデフォルト設定をリセットする"""
    _config.reset_default_settings()
    yield
    _config.reset_default_settings()
