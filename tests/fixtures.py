"""Мини‑родословные для юнит‑тестов: id → (sire, dam)."""
import pandas as pd

from pedigree_coi.records import PedigreeRecord

FULL_SIBS = {
    "S": (None, None),
    "D": (None, None),
    "A": ("S", "D"),
    "B": ("S", "D"),
    "X": ("A", "B"),
}

FIRST_COUSINS = {
    "GP_S": (None, None),
    "GP_D": (None, None),
    "Uncle": ("GP_S", "GP_D"),
    "Aunt": ("GP_S", "GP_D"),
    "U1": (None, None),
    "U2": (None, None),
    "C1": ("Uncle", "U1"),
    "C2": ("Aunt", "U2"),
    "X": ("C1", "C2"),
}


def make_records(ped):
    return [PedigreeRecord(a, sire, dam, name=a) for a, (sire, dam) in ped.items()]


def make_fetch(ped, calls=None):
    """Асинхронный fetch поверх словаря; ``calls`` собирает запрошенные id."""
    records = {r.id: r for r in make_records(ped)}

    async def fetch(animal_id):
        if calls is not None:
            calls.append(animal_id)
        return records.get(animal_id)

    return fetch


# та же полная сибсовая родословная, но с «чужими» именами колонок
animals = pd.DataFrame(
    [
        {"id_public": "S", "name": "Sire", "father_id": None, "mother_id": None},
        {"id_public": "D", "name": "Dam", "father_id": None, "mother_id": None},
        {"id_public": "A", "name": "A", "fatherId_public": "S", "motherId_public": "D"},
        {"id_public": "B", "name": "B", "sireId_public": "S", "damId_public": "D"},
        {"id_public": "X", "name": "X", "sireId_public": "A", "damId_public": "B",
         "inbreedingCoefficient": 12.5},
    ]
)

public_animals = pd.DataFrame(
    [
        {"id_public": "X", "name": "X", "sireId_public": "A", "damId_public": "B"},
        {"id_public": "EXT", "name": "External", "sireId_public": "S", "damId_public": None},
    ]
)
