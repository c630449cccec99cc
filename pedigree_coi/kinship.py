"""
Коэффициент инбридинга (COI) по Райту, 1922, методом путей.

F = Σ (½)^(n1+n2+1) · (1 + F_A)

Сумма берётся по всем общим предкам A и по всем парам путей
(отец → A, мать → A); n1, n2 – число звеньев в путях.

Дерево родословной строится рекурсивно и *не* схлопывается в DAG:
один и тот же предок может встречаться в разных ветвях, и каждый
путь к нему учитывается отдельно.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Tuple

from .records import PedigreeRecord

FetchFn = Callable[[str], Awaitable[PedigreeRecord | None]]
Path = List[str]

# через сколько шагов обхода отдавать управление циклу событий
CHECKPOINT = 1000


@dataclass
class AnimalNode:
    id: str
    name: str | None = None
    sire: AnimalNode | None = None
    dam: AnimalNode | None = None
    inbreeding: float = 0.0  # F собственного животного не подгружается, всегда 0


@dataclass(frozen=True)
class CommonAncestor:
    id: str
    name: str | None
    inbreeding: float


async def build_pedigree(
    animal_id: str | None,
    fetch: FetchFn,
    depth: int,
    visited: Mapping[str, str | None] | None = None,
) -> AnimalNode | None:
    """
    Рекурсивно строит дерево предков глубиной ``depth`` поколений.

    ``visited`` – id → имя для узлов на пути от корня до текущего
    (своя копия на каждую ветвь). Повтор id на этом пути – цикл: узел
    возвращается без родителей и без повторного ``fetch``.
    """
    if not animal_id or depth <= 0:
        return None
    visited = visited or {}
    if animal_id in visited:
        return AnimalNode(animal_id, visited[animal_id])

    record = await fetch(animal_id)
    if record is None:
        return None
    # точка отмены для внешнего таймаута, даже если fetch не ждёт I/O
    await asyncio.sleep(0)

    path = {**visited, animal_id: record.name}
    sire = await build_pedigree(record.sire_id, fetch, depth - 1, path)
    dam = await build_pedigree(record.dam_id, fetch, depth - 1, path)
    return AnimalNode(animal_id, record.name, sire, dam)


def iter_nodes(node: AnimalNode | None) -> Iterator[AnimalNode]:
    """Все узлы поддерева (корень, затем отцовская и материнская ветви)."""
    if node is None:
        return
    yield node
    yield from iter_nodes(node.sire)
    yield from iter_nodes(node.dam)


def _common(sire_nodes: Iterable[AnimalNode], dam_ids: set) -> List[CommonAncestor]:
    seen: Dict[str, CommonAncestor] = {}
    for n in sire_nodes:
        if n.id in dam_ids and n.id not in seen:
            seen[n.id] = CommonAncestor(n.id, n.name, n.inbreeding)
    return list(seen.values())


def find_common_ancestors(
    sire_tree: AnimalNode | None, dam_tree: AnimalNode | None
) -> List[CommonAncestor]:
    if sire_tree is None or dam_tree is None:
        return []
    return _common(iter_nodes(sire_tree), {n.id for n in iter_nodes(dam_tree)})


def _walk_paths(node: AnimalNode | None, target_id: str, prefix: Tuple[str, ...] = ()):
    """Обход для ``find_paths``: на каждый узел отдаёт найденный путь или None."""
    if node is None:
        return
    path = prefix + (node.id,)
    if node.id == target_id:
        yield list(path)
        return
    yield None
    yield from _walk_paths(node.sire, target_id, path)
    yield from _walk_paths(node.dam, target_id, path)


def find_paths(node: AnimalNode | None, target_id: str) -> List[Path]:
    """
    Все пути от ``node`` до ``target_id`` включительно.

    Первое совпадение на ветви её завершает: более дальние повторы
    того же id ниже по ветви не рассматриваются.
    """
    return [p for p in _walk_paths(node, target_id) if p is not None]


async def _drain(items: Iterable) -> list:
    """Собирает непустые элементы, уступая циклу событий каждые CHECKPOINT шагов."""
    out = []
    for i, item in enumerate(items, 1):
        if item is not None:
            out.append(item)
        if i % CHECKPOINT == 0:
            await asyncio.sleep(0)
    return out


def _pair_terms(sire_paths: List[Path], dam_paths: List[Path], fa: float):
    for s_path in sire_paths:
        for d_path in dam_paths:
            # длина пути – число узлов, звеньев на одно меньше: (n1+1)+(n2+1)-1
            yield s_path, d_path, 0.5 ** (len(s_path) + len(d_path) - 1) * (1 + fa)


async def wright_sum(sire_tree: AnimalNode | None, dam_tree: AnimalNode | None) -> float:
    """
    Сумма по формуле Райта (доля, 0…1) для потомка пары поддеревьев.

    Обход деревьев и перебор пар путей периодически уступают циклу
    событий, поэтому ``asyncio.wait_for`` может прервать расчёт.
    """
    if sire_tree is None or dam_tree is None:
        return 0.0
    dam_ids = {n.id for n in await _drain(iter_nodes(dam_tree))}
    common = _common(await _drain(iter_nodes(sire_tree)), dam_ids)

    coi = 0.0
    for ancestor in common:
        sire_paths = await _drain(_walk_paths(sire_tree, ancestor.id))
        dam_paths = await _drain(_walk_paths(dam_tree, ancestor.id))
        for i, (_, _, term) in enumerate(_pair_terms(sire_paths, dam_paths, ancestor.inbreeding), 1):
            coi += term
            if i % CHECKPOINT == 0:
                await asyncio.sleep(0)
        await asyncio.sleep(0)
    return coi


async def inbreeding_coefficient(animal_id: str | None, fetch: FetchFn, generations: int = 50) -> float:
    """COI животного в процентах, 2 знака. Нет данных → 0."""
    if not animal_id:
        return 0.0
    pedigree = await build_pedigree(animal_id, fetch, generations)
    if pedigree is None or pedigree.sire is None or pedigree.dam is None:
        return 0.0
    coi = await wright_sum(pedigree.sire, pedigree.dam)
    return round(coi * 100, 2)


async def _theoretical_parents(sire_id: str, dam_id: str, fetch: FetchFn, generations: int):
    sire = await build_pedigree(sire_id, fetch, generations)
    dam = await build_pedigree(dam_id, fetch, generations)
    return sire, dam


async def pairing_coefficient(
    sire_id: str | None, dam_id: str | None, fetch: FetchFn, generations: int = 5
) -> float:
    """COI гипотетического потомка sire × dam, в процентах, 4 знака."""
    if not sire_id or not dam_id:
        return 0.0
    sire, dam = await _theoretical_parents(sire_id, dam_id, fetch, generations)
    coi = await wright_sum(sire, dam)
    return round(coi * 100, 4)


async def explain_pairing(
    sire_id: str | None, dam_id: str | None, fetch: FetchFn, generations: int = 50
) -> Dict:
    """
    То же, что ``pairing_coefficient``, но с разбивкой по общим предкам:
    какие пути использованы и сколько процентов добавляет каждый предок.
    Предки отсортированы по вкладу по убыванию.
    """
    if not sire_id or not dam_id:
        return {"total": 0.0, "breakdown": []}

    sire, dam = await _theoretical_parents(sire_id, dam_id, fetch, generations)

    total = 0.0
    breakdown = []
    for ancestor in find_common_ancestors(sire, dam):
        sire_paths = find_paths(sire, ancestor.id)
        dam_paths = find_paths(dam, ancestor.id)
        contribution = 0.0
        pairs = []
        for s_path, d_path, term in _pair_terms(sire_paths, dam_paths, ancestor.inbreeding):
            contribution += term
            pairs.append(
                {
                    "sire_path": s_path,
                    "dam_path": d_path,
                    "n1_links": len(s_path) - 1,
                    "n2_links": len(d_path) - 1,
                    "contribution_pct": round(term * 100, 4),
                }
            )
        total += contribution
        breakdown.append(
            {
                "ancestor_id": ancestor.id,
                "ancestor_name": ancestor.name,
                "fa_pct": round(ancestor.inbreeding * 100, 4),
                "contribution_pct": round(contribution * 100, 4),
                "path_pairs": pairs,
            }
        )

    breakdown.sort(key=lambda b: b["contribution_pct"], reverse=True)
    return {"total": round(total * 100, 4), "breakdown": breakdown}


def make_inbreeding_fn(fetch: FetchFn, generations: int = 50, pairing_generations: int = 5):
    """
    Возвращает две корутинные функции, привязанные к ``fetch``:
        F(id)           → COI животного, %
        P(sire, dam)    → COI гипотетического потомка, %
    """
    async def F(animal_id: str) -> float:
        return await inbreeding_coefficient(animal_id, fetch, generations)

    async def P(sire_id: str, dam_id: str) -> float:
        return await pairing_coefficient(sire_id, dam_id, fetch, pairing_generations)

    return F, P
