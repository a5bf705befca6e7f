import random

import pytest

from rvpipesim.cache import MEMORY_LATENCY, Cache, Policy, PolicyError
from rvpipesim.memory import MemoryManager


def make_cache(memory, cache_size=64, block_size=16, assoc=1, hit=1, miss=8, **kwargs):
    policy = Policy(cache_size, block_size, cache_size // block_size, assoc, hit, miss)
    return Cache(memory, policy, **kwargs)


@pytest.mark.parametrize(
    "policy",
    [
        Policy(48, 16, 3, 1, 1, 8),
        Policy(64, 12, 4, 1, 1, 8),
        Policy(64, 16, 3, 1, 1, 8),
        Policy(64, 16, 4, 3, 1, 8),
        Policy(64, 16, 4, 0, 1, 8),
    ],
)
def test_invalid_policies_rejected(policy):
    with pytest.raises(PolicyError):
        policy.validate()
    with pytest.raises(PolicyError):
        Cache(MemoryManager(), policy)


def test_miss_then_hit_statistics():
    cache = make_cache(MemoryManager())
    cache.get_byte(0x40)
    cache.get_byte(0x41)
    s = cache.statistics
    assert (s.num_read, s.num_hit, s.num_miss, s.num_write) == (2, 1, 1, 0)
    assert s.total_cycles == cache.policy.miss_latency + cache.policy.hit_latency


def test_reads_memory_contents_and_tracks_block():
    memory = MemoryManager()
    memory.set_byte_no_cache(0x47, 7)
    cache = make_cache(memory)
    assert cache.get_byte(0x47) == 7
    assert cache.in_cache(0x40) and cache.in_cache(0x4F)
    assert not cache.in_cache(0x50)


def test_last_cycles_reports_latency():
    cache = make_cache(MemoryManager(), hit=3)
    cache.get_byte(0x10)
    assert cache.last_cycles == MEMORY_LATENCY == 100
    cache.get_byte(0x10)
    assert cache.last_cycles == cache.policy.hit_latency


def test_write_back_defers_until_eviction():
    memory = MemoryManager()
    cache = make_cache(memory)
    cache.set_byte(0x0, 5)
    assert memory.get_byte_no_cache(0x0) == 0
    cache.get_byte(64)  # same set in a direct-mapped cache of 4 lines
    assert not cache.in_cache(0x0)
    assert memory.get_byte_no_cache(0x0) == 5
    assert cache.statistics.total_cycles == 3 * cache.policy.miss_latency


def test_write_through_updates_memory_on_hit():
    memory = MemoryManager()
    cache = make_cache(memory, write_back=False)
    cache.set_byte(0x0, 5)
    cache.set_byte(0x0, 6)
    assert memory.get_byte_no_cache(0x0) == 6
    assert cache.get_byte(0x0) == 6


def test_no_write_allocate_bypasses_cache():
    memory = MemoryManager()
    cache = make_cache(memory, write_allocate=False)
    cache.set_byte(0x20, 9)
    assert memory.get_byte_no_cache(0x20) == 9
    assert not cache.in_cache(0x20)
    assert cache.statistics.num_miss == 1
    assert cache.last_cycles == 0


def test_lru_replacement():
    cache = make_cache(MemoryManager(), assoc=2)
    for addr in (0, 32, 0, 64):  # all map to set 0 of a 2-way cache
        cache.get_byte(addr)
    assert cache.in_cache(0)
    assert not cache.in_cache(32)
    assert cache.in_cache(64)


def test_block_ids_fill_set_slots():
    cache = make_cache(MemoryManager(), assoc=2)
    assert cache.get_block_id(0) is None
    cache.get_byte(0)
    cache.get_byte(32)
    ids = {cache.get_block_id(0), cache.get_block_id(32)}
    assert ids == {0, 1}
    cache.get_byte(16)
    assert cache.get_block_id(16) // cache.policy.associativity == 1


def test_two_levels_fetch_through_lower_cache():
    memory = MemoryManager()
    memory.set_byte_no_cache(0x85, 42)
    l2 = make_cache(memory, cache_size=256, assoc=2, hit=5, miss=20)
    l1 = make_cache(memory, lower_cache=l2)
    assert l1.get_byte(0x85) == 42
    assert l1.last_cycles == l2.policy.hit_latency
    assert l2.statistics.num_read == l1.policy.block_size
    assert l2.statistics.num_miss == 1


def test_l1_eviction_writes_into_l2():
    memory = MemoryManager()
    l2 = make_cache(memory, cache_size=256, assoc=2)
    l1 = make_cache(memory, lower_cache=l2)
    l1.set_byte(0x3, 77)
    l1.get_byte(64)
    assert not l1.in_cache(0x3)
    assert memory.get_byte_no_cache(0x3) == 0
    assert l2.get_byte(0x3) == 77


@pytest.mark.parametrize(
    "write_back, write_allocate", [(True, True), (True, False), (False, False)]
)
def test_cache_is_consistent_with_reference(write_back, write_allocate):
    memory = MemoryManager()
    cache = make_cache(
        memory, assoc=2, write_back=write_back, write_allocate=write_allocate
    )
    expected: dict[int, int] = {}
    rng = random.Random(1234)
    for _ in range(2000):
        addr = rng.randrange(512)
        if rng.random() < 0.5:
            value = rng.randrange(256)
            cache.set_byte(addr, value)
            expected[addr] = value
        else:
            assert cache.get_byte(addr) == expected.get(addr, 0)
    s = cache.statistics
    assert s.num_hit + s.num_miss == s.num_read + s.num_write


def test_print_statistics_includes_lower_level(capsys):
    memory = MemoryManager()
    l2 = make_cache(memory, cache_size=256)
    l1 = make_cache(memory, lower_cache=l2)
    l1.get_byte(0)
    l1.print_statistics()
    out = capsys.readouterr().out
    assert "Num Read: 1\n" in out
    assert "---------- LOWER CACHE ----------" in out