# tests/unit/test_persistence.py
"""
针对持久化层的测试。

纯函数 (`merge_variations` 等) 直接测试；数据库操作使用临时 SQLite 文件。
"""

from datetime import timedelta
from typing import Any

import pytest
from pytest_mock import MockerFixture

from fluent_gateway.core.interfaces import PersistenceHandler
from fluent_gateway.core.types import ContextSource, ContextVariation, CredentialRecord, UsageKind
from fluent_gateway.persistence.base import BasePersistenceHandler
from fluent_gateway.persistence.utils import dump_variations, load_variations, merge_variations
from fluent_gateway.utils import Window, days_ago, window_start


def _basic(example: str) -> ContextVariation:
    return ContextVariation(
        pronunciation="CAH-SAH", meaning="The Spanish word", example=example,
        source=ContextSource.BASIC,
    )


def _ai(example: str) -> ContextVariation:
    return ContextVariation(
        pronunciation="KAH-sah", meaning="A home", example=example, source=ContextSource.AI
    )


def _record(installation_id: str, issued_days_ago: int = 0) -> CredentialRecord:
    issued = days_ago(issued_days_ago)
    return CredentialRecord(
        installation_id=installation_id,
        shared_key="shared",
        refresh_token_hash="hash",
        issued_at=issued,
        expires_at=issued + timedelta(days=28),
        refresh_expires_at=issued + timedelta(days=7),
    )


# ---------------------------------------------------------------------------
# merge_variations
# ---------------------------------------------------------------------------


def test_ai_variations_replace_basic_ones() -> None:
    merged = merge_variations([_basic("a"), _basic("b")], [_ai("c")], 6)
    assert [v.example for v in merged] == ["c"]


def test_basic_variations_never_join_ai_ones() -> None:
    merged = merge_variations([_ai("a")], [_basic("b")], 6)
    assert [v.example for v in merged] == ["a"]


def test_basic_variations_accumulate_without_ai() -> None:
    merged = merge_variations([_basic("a")], [_basic("b")], 6)
    assert [v.example for v in merged] == ["a", "b"]


def test_duplicates_and_empty_variations_are_dropped() -> None:
    merged = merge_variations([_ai("a")], [_ai("a"), ContextVariation(), _ai("b")], 6)
    assert [v.example for v in merged] == ["a", "b"]


def test_oldest_variations_are_evicted_beyond_cap() -> None:
    merged = merge_variations(
        [_ai(str(i)) for i in range(5)], [_ai("5"), _ai("6")], 6
    )
    assert [v.example for v in merged] == ["1", "2", "3", "4", "5", "6"]


def test_load_variations_skips_malformed_items() -> None:
    raw = dump_variations([_ai("a")]) + ["junk", {"source": "unknown"}]
    assert [v.example for v in load_variations(raw)] == ["a"]
    assert load_variations(None) == []
    assert load_variations({"not": "a list"}) == []


# ---------------------------------------------------------------------------
# 数据库操作
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_credential_roundtrip(handler: PersistenceHandler) -> None:
    await handler.save_credential(_record("install-persist-01"), "1.0.0", "chrome")
    stored = await handler.get_credential("install-persist-01")

    assert stored is not None
    assert stored.shared_key == "shared"
    assert stored.expires_at.tzinfo is not None
    assert await handler.get_credential("install-missing-01") is None


@pytest.mark.asyncio
async def test_get_entries_is_case_insensitive(handler: PersistenceHandler) -> None:
    await handler.upsert_translation("House", "es", "casa", "KAH-sah", [_ai("a")], 6)
    entries = await handler.get_entries(["HOUSE", "water"], "es")

    assert set(entries) == {"house"}
    entry = entries["house"]
    assert entry.translation == "casa"
    assert entry.pronunciation == "KAH-sah"
    assert entry.has_context


@pytest.mark.asyncio
async def test_upsert_merges_with_existing_variations(handler: PersistenceHandler) -> None:
    await handler.upsert_translation("house", "es", "casa", None, [_basic("a")], 6)
    await handler.upsert_translation("house", "es", "casa", None, [_basic("b")], 6)

    entry = (await handler.get_entries(["house"], "es"))["house"]
    assert [v.example for v in entry.context_variations] == ["a", "b"]
    assert entry.pronunciation == "CAH-SAH"


@pytest.mark.asyncio
async def test_append_variations_returns_merged_list(handler: PersistenceHandler) -> None:
    await handler.upsert_translation("house", "es", "casa", None, [_basic("a")], 6)
    merged = await handler.append_variations("house", "es", "casa", [_ai("b")], 6)

    assert [v.example for v in merged] == ["b"]
    entry = (await handler.get_entries(["house"], "es"))["house"]
    assert [v.source for v in entry.context_variations] == [ContextSource.AI]
    # 已有的发音不被覆盖
    assert entry.pronunciation == "CAH-SAH"


@pytest.mark.asyncio
async def test_concurrent_append_is_merged_not_lost(
    handler: BasePersistenceHandler, mocker: MockerFixture
) -> None:
    """读取之后行被另一次写入修改时，本次写入重新读取并合并。"""
    await handler.upsert_translation("house", "es", "casa", None, [_basic("a")], 6)
    real_load = handler._load_current
    interleaved = False

    async def load_then_interleave(*args: Any) -> Any:
        nonlocal interleaved
        snapshot = await real_load(*args)
        if not interleaved:
            interleaved = True
            await handler.append_variations("house", "es", "casa", [_basic("c")], 6)
        return snapshot

    load = mocker.patch.object(handler, "_load_current", side_effect=load_then_interleave)
    merged = await handler.append_variations("house", "es", "casa", [_basic("b")], 6)

    assert [v.example for v in merged] == ["a", "c", "b"]
    entry = (await handler.get_entries(["house"], "es"))["house"]
    assert [v.example for v in entry.context_variations] == ["a", "c", "b"]
    assert load.call_count == 3


@pytest.mark.asyncio
async def test_concurrent_first_write_is_merged_not_lost(
    handler: BasePersistenceHandler, mocker: MockerFixture
) -> None:
    """两次写入都以为行不存在时，插入失败的一方改为合并更新。"""
    real_load = handler._load_current
    interleaved = False

    async def load_then_interleave(*args: Any) -> Any:
        nonlocal interleaved
        snapshot = await real_load(*args)
        if not interleaved:
            interleaved = True
            await handler.upsert_translation("house", "es", "casa", None, [_basic("a")], 6)
        return snapshot

    mocker.patch.object(handler, "_load_current", side_effect=load_then_interleave)
    await handler.append_variations("house", "es", "casa", [_ai("b")], 6)

    entry = (await handler.get_entries(["house"], "es"))["house"]
    # AI 变体替换基础占位变体
    assert [v.example for v in entry.context_variations] == ["b"]
    assert entry.pronunciation == "CAH-SAH"


@pytest.mark.asyncio
async def test_usage_counter_never_goes_negative(handler: PersistenceHandler) -> None:
    windows = {Window.HOUR: window_start(Window.HOUR), Window.DAY: window_start(Window.DAY)}
    await handler.increment_usage("install-1", "es", UsageKind.TRANSLATION, windows, 3)
    await handler.increment_usage("install-1", "es", UsageKind.TRANSLATION, windows, -5)

    usage = await handler.get_usage("install-1", "es", UsageKind.TRANSLATION, windows)
    assert usage == {Window.HOUR: 0, Window.DAY: 0}


@pytest.mark.asyncio
async def test_usage_is_keyed_by_kind(handler: PersistenceHandler) -> None:
    windows = {Window.HOUR: window_start(Window.HOUR)}
    await handler.increment_usage("install-1", "es", UsageKind.CONTEXT, windows, 2)

    assert await handler.get_usage(
        "install-1", "es", UsageKind.TRANSLATION, windows
    ) == {Window.HOUR: 0}
    assert await handler.get_usage(
        "install-1", "es", UsageKind.CONTEXT, windows
    ) == {Window.HOUR: 2}


@pytest.mark.asyncio
async def test_cost_accumulates(handler: PersistenceHandler) -> None:
    windows = {Window.HOUR: window_start(Window.HOUR), Window.DAY: window_start(Window.DAY)}
    await handler.add_cost(windows, 0.25)
    await handler.add_cost(windows, 0.5)

    cost = await handler.get_cost(windows)
    assert cost[Window.HOUR] == pytest.approx(0.75)
    assert cost[Window.DAY] == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_garbage_collect(handler: PersistenceHandler) -> None:
    await handler.save_credential(_record("install-stale-001", 200), None, None)
    await handler.save_credential(_record("install-fresh-001"), None, None)
    old_day = window_start(Window.DAY, days_ago(40))
    await handler.increment_usage(
        "install-stale-001", "es", UsageKind.TRANSLATION, {Window.DAY: old_day}, 4
    )
    await handler.add_cost({Window.DAY: old_day}, 1.0)
    await handler.add_cost({Window.DAY: window_start(Window.DAY)}, 1.0)

    cutoff = days_ago(180)
    usage_cutoff = window_start(Window.DAY, days_ago(30))
    expected = {
        "deleted_installations": 1,
        "deleted_usage_counters": 1,
        "deleted_cost_windows": 1,
    }

    assert await handler.garbage_collect(cutoff, usage_cutoff, dry_run=True) == expected
    assert await handler.get_credential("install-stale-001") is not None

    assert await handler.garbage_collect(cutoff, usage_cutoff) == expected
    assert await handler.get_credential("install-stale-001") is None
    assert await handler.get_credential("install-fresh-001") is not None
    assert await handler.garbage_collect(cutoff, usage_cutoff, dry_run=True) == {
        "deleted_installations": 0,
        "deleted_usage_counters": 0,
        "deleted_cost_windows": 0,
    }
