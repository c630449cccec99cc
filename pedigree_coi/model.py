"""
Пересчёт COI по всей популяции и одиночные запросы.

Порядок обхода – топологический (Кан): сначала основатели, потом потомки.
Каждое животное считается под таймаутом; ошибка одного не останавливает
пересчёт остальных.
"""
from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Tuple

from tqdm import tqdm

from .kinship import FetchFn, inbreeding_coefficient, pairing_coefficient
from .records import PedigreeRecord, PedigreeStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
LOGGER = logging.getLogger(__name__)

DEFAULT_GENERATIONS = 50
PAIRING_GENERATIONS = 5
EXPLAIN_GENERATIONS = 50
ITEM_TIMEOUT = 30.0
PROGRESS_EVERY = 50

SaveFn = Callable[[str, float], Awaitable[None]]
LogSink = Callable[[str], None]


@dataclass
class RecomputeSummary:
    processed: int = 0
    updated: int = 0
    errors: int = 0
    order: List[str] = field(default_factory=list)
    fallback: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def topological_order(individuals: Iterable[PedigreeRecord]) -> Tuple[List[str], List[str]]:
    """
    Возвращает (order, fallback).

    Рёбра родитель → потомок берутся только для родителей из той же
    популяции. Не достигнутые алгоритмом Кана (циклы) дописываются
    в конец в исходном порядке и дублируются в ``fallback``.
    """
    by_id: Dict[str, PedigreeRecord] = {}
    for rec in individuals:
        by_id.setdefault(rec.id, rec)

    children: Dict[str, List[str]] = {a: [] for a in by_id}
    in_degree = {a: 0 for a in by_id}
    for rec in by_id.values():
        for parent in (rec.sire_id, rec.dam_id):
            if parent and parent in by_id:
                children[parent].append(rec.id)
                in_degree[rec.id] += 1

    queue = deque(a for a, deg in in_degree.items() if deg == 0)
    order: List[str] = []
    while queue:
        animal_id = queue.popleft()
        order.append(animal_id)
        for child in children[animal_id]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    reached = set(order)
    fallback = [a for a in by_id if a not in reached]
    return order + fallback, fallback


def _fmt(value: float | None) -> str:
    return "null" if value is None else f"{value}"


async def recompute_all(
    individuals: Iterable[PedigreeRecord],
    fetch: FetchFn,
    save: SaveFn | None = None,
    *,
    dry_run: bool = False,
    log_sink: LogSink | None = None,
    generations: int = DEFAULT_GENERATIONS,
    timeout: float = ITEM_TIMEOUT,
    progress_every: int = PROGRESS_EVERY,
) -> RecomputeSummary:
    individuals = list(individuals)
    current = {}
    for rec in individuals:
        current.setdefault(rec.id, rec.inbreeding_coefficient)

    LOGGER.info("🔍  Found %d animals", len(current))
    order, fallback = topological_order(individuals)
    summary = RecomputeSummary(order=order, fallback=fallback)
    if fallback:
        LOGGER.warning(
            "⚠️  %d animals not reachable in topological order (cycle or external parents), "
            "processed last: %s",
            len(fallback),
            ", ".join(fallback),
        )

    def emit(line: str) -> None:
        LOGGER.info(line)
        if log_sink is not None:
            log_sink(line)

    LOGGER.info("🧮  Processing %d animals in topological order …", len(order))
    for animal_id in tqdm(order, desc="coi"):
        summary.processed += 1
        try:
            coeff = await asyncio.wait_for(
                inbreeding_coefficient(animal_id, fetch, generations), timeout=timeout
            )
            old = current.get(animal_id)
            changed = old != coeff

            if dry_run:
                if changed:
                    emit(f"[DRY] {animal_id}: {_fmt(old)} → {coeff}")
            else:
                if save is not None:
                    await save(animal_id, coeff)
                if changed:
                    summary.updated += 1
                    emit(f"[UPDATED] {animal_id}: {_fmt(old)} → {coeff}")
        except asyncio.TimeoutError:
            summary.errors += 1
            summary.failed.append(animal_id)
            LOGGER.error("[ERROR] %s: timeout after %ss", animal_id, timeout)
        except Exception as e:
            summary.errors += 1
            summary.failed.append(animal_id)
            LOGGER.error("[ERROR] %s: %s", animal_id, e)

        if progress_every and summary.processed % progress_every == 0:
            LOGGER.info(
                "  … %d/%d processed, %d updated, %d errors",
                summary.processed, len(order), summary.updated, summary.errors,
            )

    LOGGER.info(
        "✅  Done. Processed: %d, Updated: %d, Errors: %d",
        summary.processed, summary.updated, summary.errors,
    )
    if dry_run:
        LOGGER.info("(dry-run – no changes saved)")
    return summary


def _file_sink(path: str | Path) -> LogSink:
    def sink(line: str) -> None:
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    return sink


def recalculate(
    data_dir: str,
    dry_run: bool = False,
    log_file: str | None = None,
    generations: int = DEFAULT_GENERATIONS,
    timeout: float = ITEM_TIMEOUT,
) -> RecomputeSummary:
    LOGGER.info("📦  Loading data …")
    store = PedigreeStore.from_dir(data_dir)

    summary = asyncio.run(
        recompute_all(
            store.records(),
            store.fetch,
            store.save_coefficient,
            dry_run=dry_run,
            log_sink=_file_sink(log_file) if log_file else None,
            generations=generations,
            timeout=timeout,
        )
    )
    if not dry_run:
        LOGGER.info("💾  Writing %s …", data_dir)
        store.write(data_dir)
    return summary


# --------------------------------------------------------------------------- #
# Одиночные запросы
# --------------------------------------------------------------------------- #
async def query_inbreeding(
    store: PedigreeStore, animal_id: str, generations: int = DEFAULT_GENERATIONS
) -> Dict:
    coeff = await inbreeding_coefficient(animal_id, store.fetch, generations)
    # кэшируем значение у животного и его публичной копии, если они есть
    await store.save_coefficient(animal_id, coeff)
    return {"id": animal_id, "inbreeding_coefficient": coeff}


async def query_pairing(
    store: PedigreeStore, sire_id: str, dam_id: str, generations: int = PAIRING_GENERATIONS
) -> Dict:
    if not sire_id or not dam_id:
        raise ValueError("Both sire_id and dam_id are required")
    coeff = await pairing_coefficient(sire_id, dam_id, store.fetch, generations)
    return {"sire_id": sire_id, "dam_id": dam_id, "inbreeding_coefficient": coeff}
