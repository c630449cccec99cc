import asyncio
import logging
import time

import numpy as np
import pytest

from pedigree_coi.model import (
    query_inbreeding,
    query_pairing,
    recompute_all,
    topological_order,
)
from pedigree_coi.records import PedigreeRecord, PedigreeStore
from .fixtures import FIRST_COUSINS, FULL_SIBS, animals, make_fetch, make_records, public_animals


def test_topological_order_parents_first():
    records = list(reversed(make_records(FIRST_COUSINS)))
    order, fallback = topological_order(records)
    assert fallback == []
    assert sorted(order) == sorted(FIRST_COUSINS)
    pos = {a: i for i, a in enumerate(order)}
    for child, (sire, dam) in FIRST_COUSINS.items():
        for parent in (sire, dam):
            if parent:
                assert pos[parent] < pos[child]


def test_topological_order_cycle_fallback():
    records = [
        PedigreeRecord("F"),
        PedigreeRecord("A", sire_id="B", dam_id="F"),
        PedigreeRecord("B", sire_id="A", dam_id="F"),
        PedigreeRecord("C", sire_id="EXTERNAL", dam_id="F"),
    ]
    order, fallback = topological_order(records)
    assert order == ["F", "C", "A", "B"]
    assert fallback == ["A", "B"]


def test_recompute_dry_run(caplog):
    records = [
        PedigreeRecord(r.id, r.sire_id, r.dam_id, r.name, 12.5 if r.id == "X" else 0.0)
        for r in make_records(FULL_SIBS)
    ]
    saved = []

    async def save(animal_id, value):
        saved.append((animal_id, value))

    sink = []
    with caplog.at_level(logging.INFO):
        summary = asyncio.run(
            recompute_all(records, make_fetch(FULL_SIBS), save, dry_run=True, log_sink=sink.append)
        )
    assert saved == []
    assert (summary.processed, summary.updated, summary.errors) == (5, 0, 0)
    assert sink == ["[DRY] X: 12.5 → 25.0"]
    assert "Done. Processed: 5" in caplog.text


def test_recompute_live_saves_every_animal():
    saved = {}

    async def save(animal_id, value):
        saved[animal_id] = value

    summary = asyncio.run(recompute_all(make_records(FULL_SIBS), make_fetch(FULL_SIBS), save))
    assert saved == {"S": 0.0, "D": 0.0, "A": 0.0, "B": 0.0, "X": 25.0}
    # кэш был пуст (None) – все значения считаются изменёнными
    assert summary.updated == 5
    assert summary.order.index("A") < summary.order.index("X")


def test_recompute_flags_fallback(caplog):
    records = [PedigreeRecord("A", sire_id="B"), PedigreeRecord("B", sire_id="A")]
    ped = {"A": ("B", None), "B": ("A", None)}
    with caplog.at_level(logging.WARNING):
        summary = asyncio.run(recompute_all(records, make_fetch(ped), dry_run=True))
    assert summary.fallback == ["A", "B"]
    assert summary.errors == 0
    assert "not reachable in topological order" in caplog.text


def test_recompute_timeout_and_errors_do_not_abort():
    base = make_fetch(FULL_SIBS)

    async def fetch(animal_id):
        if animal_id == "A":
            await asyncio.sleep(5)
        if animal_id == "D":
            raise ConnectionError("record source went away")
        return await base(animal_id)

    summary = asyncio.run(
        recompute_all(make_records(FULL_SIBS), fetch, dry_run=True, timeout=0.05)
    )
    assert summary.processed == 5
    # A и X упираются в медленный A, D и B – в ошибку D
    assert sorted(summary.failed) == ["A", "B", "D", "X"]
    assert summary.errors == 4


def test_query_inbreeding_persists_to_both_tables():
    store = PedigreeStore(animals, public_animals)
    result = asyncio.run(query_inbreeding(store, "X"))
    assert result == {"id": "X", "inbreeding_coefficient": 25.0}
    assert store.get("X").inbreeding_coefficient == 25.0
    assert store.public.at["X", "inbreeding_coefficient"] == 25.0


def test_query_pairing():
    store = PedigreeStore(animals, public_animals)
    result = asyncio.run(query_pairing(store, "A", "B"))
    assert result["sire_id"] == "A" and result["dam_id"] == "B"
    assert np.isclose(result["inbreeding_coefficient"], 25)
    # «внешнее» животное из публичной таблицы тоже находится
    ext = asyncio.run(query_pairing(store, "EXT", "A"))
    assert np.isclose(ext["inbreeding_coefficient"], 12.5)
    with pytest.raises(ValueError):
        asyncio.run(query_pairing(store, "A", ""))


def _ladder(generations):
    """В каждом поколении два животных – дети обоих животных предыдущего."""
    ped = {"L0a": (None, None), "L0b": (None, None)}
    for g in range(1, generations + 1):
        parents = (f"L{g - 1}a", f"L{g - 1}b")
        ped[f"L{g}a"] = parents
        ped[f"L{g}b"] = parents
    ped["X"] = (f"L{generations}a", f"L{generations}b")
    return ped


def test_timeout_interrupts_cpu_bound_pedigree():
    ped = _ladder(19)
    started = time.perf_counter()
    summary = asyncio.run(
        recompute_all(make_records({"X": ped["X"]}), make_fetch(ped), dry_run=True, timeout=0.1)
    )
    elapsed = time.perf_counter() - started
    assert summary.failed == ["X"]
    assert elapsed < 3


def test_small_ladder_still_completes():
    # то же устройство, но маленькое: таймаут не мешает обычному расчёту
    ped = _ladder(3)
    summary = asyncio.run(recompute_all(make_records(ped), make_fetch(ped), dry_run=True))
    assert summary.errors == 0
