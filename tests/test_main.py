"""Tests for the CLI pass driver."""

import argparse

import pytest

from tasks_sync import main
from tasks_sync.local_cache import LocalSyncCache


@pytest.fixture
def cache_path(tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    monkeypatch.setattr(main, "LocalSyncCache", lambda: LocalSyncCache(path))
    return path


@pytest.fixture
def credentials_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "csecret")
    monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "rtoken")


def sync_args(force=False, reset=False):
    return argparse.Namespace(force=force, reset=reset)


def test_sync_without_credentials_fails_fast(monkeypatch, cache_path):
    for var in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REFRESH_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(main, "build_engine", lambda **kwargs: pytest.fail("engine built"))

    assert main.cmd_sync(sync_args()) == 1


def test_sync_runs_one_pass(monkeypatch, credentials_env, cache_path, engine, local, remote):
    item = local.add("Buy milk")
    monkeypatch.setattr(main, "build_engine", lambda **kwargs: engine)

    assert main.cmd_sync(sync_args()) == 0
    assert remote.calls["create_task"] == 1
    assert remote.calls["close"] == 1
    assert item.local_id in LocalSyncCache(cache_path)


def test_sync_reports_item_failures(monkeypatch, credentials_env, cache_path, engine, local, remote):
    local.add("Broken")
    remote.fail_titles = {"Broken"}
    monkeypatch.setattr(main, "build_engine", lambda **kwargs: engine)

    assert main.cmd_sync(sync_args()) == 1


def test_sync_reset_clears_cache(monkeypatch, credentials_env, cache_path, engine, local, remote):
    item = local.add("Buy milk")
    monkeypatch.setattr(main, "build_engine", lambda **kwargs: engine)
    main.cmd_sync(sync_args())

    main.cmd_sync(sync_args(reset=True))

    # The mapping store still knows the item, so nothing is created twice
    assert remote.calls["create_task"] == 1
    assert item.local_id in LocalSyncCache(cache_path)
