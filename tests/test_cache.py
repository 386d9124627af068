"""
Tests for the TTL cache and the kanban key scheme.
"""
import pytest

from worklog.cache import KanbanCache, TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TTLCache
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("k", "v", ttl=10)
    clock.advance(9)
    assert cache.get("k") == "v"
    clock.advance(2)
    assert cache.get("k") is None


def test_lru_eviction():
    cache = TTLCache(maxsize=2, clock=FakeClock())
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.get("a")
    cache.set("c", 3, ttl=60)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_delete_prefix():
    cache = TTLCache(clock=FakeClock())
    cache.set("kanban:board:p1:t1", 1, ttl=60)
    cache.set("kanban:board:p1:t2", 2, ttl=60)
    cache.set("kanban:board:p2:t1", 3, ttl=60)
    assert cache.delete_prefix("kanban:board:p1:") == 2
    assert cache.get("kanban:board:p2:t1") == 3


def test_invalid_maxsize():
    with pytest.raises(ValueError):
        TTLCache(maxsize=0)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# KanbanCache
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestKanbanCache:

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = KanbanCache(clock=self.clock)

    def test_key_scheme(self):
        assert KanbanCache.board_key("p1", "t1") == "kanban:board:p1:t1"
        assert KanbanCache.columns_key("p1") == "kanban:columns:p1"
        assert KanbanCache.project_key("p1") == "kanban:project:p1"
        assert KanbanCache.user_projects_key("a@example.com") == "kanban:user-projects-v2:a@example.com"

    def test_board_uses_kanban_ttl(self):
        self.cache.set_board("p1", "t1", [{"id": "c1"}])
        self.clock.advance(299)
        assert self.cache.get_board("p1", "t1") == [{"id": "c1"}]
        self.clock.advance(2)
        assert self.cache.get_board("p1", "t1") is None

    def test_user_ttl_is_longer(self):
        self.cache.set_user_projects("a@example.com", ["p1"])
        self.clock.advance(1000)
        assert self.cache.get_user_projects("a@example.com") == ["p1"]

    def test_ttl_override(self):
        cache = KanbanCache(ttls={"kanban": 5}, clock=self.clock)
        cache.set_board("p1", "t1", [])
        self.clock.advance(6)
        assert cache.get_board("p1", "t1") is None

    def test_invalidate_board_only_touches_that_team(self):
        self.cache.set_board("p1", "t1", [1])
        self.cache.set_board("p1", "t2", [2])
        assert self.cache.invalidate_board("p1", "t1") is True
        assert self.cache.get_board("p1", "t1") is None
        assert self.cache.get_board("p1", "t2") == [2]

    def test_invalidate_project_drops_every_board(self):
        self.cache.set_board("p1", "t1", [1])
        self.cache.set_board("p1", "t2", [2])
        self.cache.set_columns("p1", [])
        self.cache.set_board("p2", "t1", [3])
        assert self.cache.invalidate_project("p1") == 3
        assert self.cache.get_board("p2", "t1") == [3]

    def test_fill_after_invalidation_is_discarded(self):
        generation = self.cache.generation("p1")
        self.cache.invalidate_project("p1")
        assert self.cache.set_board("p1", "t1", ["old"], generation=generation) is False
        assert self.cache.get_board("p1", "t1") is None

        generation = self.cache.generation("p1")
        assert self.cache.set_board("p1", "t1", ["new"], generation=generation) is True
        assert self.cache.get_board("p1", "t1") == ["new"]

    def test_board_invalidation_bumps_generation(self):
        before = self.cache.generation("p1")
        self.cache.invalidate_board("p1", "t1")
        assert self.cache.generation("p1") == before + 1
        assert self.cache.generation("p2") == 0

    def test_stats(self):
        self.cache.set_board("p1", "t1", [])
        self.cache.get_board("p1", "t1")
        self.cache.get_board("p1", "missing")
        stats = self.cache.stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["ttls"]["kanban"] == 300
