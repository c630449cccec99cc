#!/usr/bin/env python3
"""
CLI‑обёртка: пересчитать COI всех животных в data_dir.

Примеры:
    python -m pedigree_coi.main --data_dir data
    python -m pedigree_coi.main --data_dir data --dry-run --log coi.log
    python -m pedigree_coi.main --data_dir data --animal CTC311
    python -m pedigree_coi.main --data_dir data --pairing CTC953 CTC276 --explain
"""
from __future__ import annotations
import argparse
import asyncio
import json
import sys

from .kinship import explain_pairing
from .model import (
    DEFAULT_GENERATIONS,
    EXPLAIN_GENERATIONS,
    ITEM_TIMEOUT,
    LOGGER,
    PAIRING_GENERATIONS,
    query_inbreeding,
    query_pairing,
    recalculate,
)
from .records import PedigreeStore, RecordSourceError


def _parse(argv=None):
    p = argparse.ArgumentParser("coi recalculation")
    p.add_argument("--data_dir", default="data",
                   help="директорий с animals.csv и (необязательно) public_animals.csv")
    p.add_argument("--dry-run", action="store_true",
                   help="только посчитать и показать изменения, ничего не записывать")
    p.add_argument("--log", default=None,
                   help="файл, куда дописываются изменения COI")
    p.add_argument("--generations", type=int, default=None,
                   help="глубина родословной (по умолчанию 50, для --pairing 5)")
    p.add_argument("--timeout", type=float, default=ITEM_TIMEOUT,
                   help="таймаут на одно животное, с")
    p.add_argument("--animal", default=None, help="посчитать COI одного животного")
    p.add_argument("--pairing", nargs=2, metavar=("SIRE", "DAM"), default=None,
                   help="посчитать COI гипотетического потомка пары")
    p.add_argument("--explain", action="store_true",
                   help="с --pairing: разбивка по общим предкам")

    args = p.parse_args(argv)
    if args.animal is not None and not args.animal.strip():
        p.error("--animal: пустой id")
    if args.pairing is not None and not all(a.strip() for a in args.pairing):
        p.error("--pairing: нужны два непустых id (SIRE DAM)")
    if args.explain and args.pairing is None:
        p.error("--explain работает только вместе с --pairing")
    return args


def _single(args) -> dict:
    store = PedigreeStore.from_dir(args.data_dir)
    if args.animal:
        result = asyncio.run(
            query_inbreeding(store, args.animal, args.generations or DEFAULT_GENERATIONS)
        )
        if not args.dry_run:
            store.write(args.data_dir)
        return result

    sire_id, dam_id = args.pairing
    if args.explain:
        return asyncio.run(
            explain_pairing(sire_id, dam_id, store.fetch, args.generations or EXPLAIN_GENERATIONS)
        )
    return asyncio.run(
        query_pairing(store, sire_id, dam_id, args.generations or PAIRING_GENERATIONS)
    )


def main(argv=None) -> int:
    args = _parse(argv)

    try:
        if args.animal or args.pairing:
            print(json.dumps(_single(args), ensure_ascii=False, indent=2))
            return 0

        recalculate(
            args.data_dir,
            dry_run=args.dry_run,
            log_file=args.log,
            generations=args.generations or DEFAULT_GENERATIONS,
            timeout=args.timeout,
        )
    except RecordSourceError as e:
        LOGGER.error("❌  Fatal: %s", e)
        return 1
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
