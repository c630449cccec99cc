"""
Источник записей родословной.

Внешние записи приходят в «свободной» форме: родители могут называться
``sireId_public`` / ``fatherId_public`` / ``father_id`` и т.д.
Здесь они приводятся к одной строгой форме ``PedigreeRecord``,
а ``PedigreeStore`` держит две таблицы (основную и публичную копию)
в ``pandas.DataFrame`` и отдаёт записи асинхронно.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

import pandas as pd

ALIASES: Dict[str, Tuple[str, ...]] = {
    "id": ("id", "id_public"),
    "name": ("name",),
    "sire_id": ("sire_id", "sireId_public", "fatherId_public", "father_id"),
    "dam_id": ("dam_id", "damId_public", "motherId_public", "mother_id"),
    "inbreeding_coefficient": ("inbreeding_coefficient", "inbreedingCoefficient"),
}
COLUMNS = list(ALIASES)

ANIMALS_FILE = "animals.csv"
PUBLIC_FILE = "public_animals.csv"


class RecordSourceError(RuntimeError):
    """Источник записей недоступен или повреждён."""


@dataclass(frozen=True)
class PedigreeRecord:
    id: str
    sire_id: str | None = None
    dam_id: str | None = None
    name: str | None = None
    inbreeding_coefficient: float | None = None


def _clean(value) -> str | None:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    return text or None


def _first(raw: Mapping, field: str):
    for key in ALIASES[field]:
        value = _clean(raw.get(key))
        if value is not None:
            return value
    return None


def normalize_record(raw: Mapping) -> PedigreeRecord:
    """Приводит запись с любыми синонимами полей к ``PedigreeRecord``."""
    animal_id = _first(raw, "id")
    if animal_id is None:
        raise ValueError(f"Record without id: {dict(raw)!r}")
    coeff = _first(raw, "inbreeding_coefficient")
    return PedigreeRecord(
        id=animal_id,
        sire_id=_first(raw, "sire_id"),
        dam_id=_first(raw, "dam_id"),
        name=_first(raw, "name"),
        inbreeding_coefficient=float(coeff) if coeff is not None else None,
    )


def _coalesce(df: pd.DataFrame, field: str) -> pd.Series:
    """Первое непустое значение по всем синонимам поля ``field``."""
    col = pd.Series(None, index=df.index, dtype=object)
    for alias in ALIASES[field]:
        if alias in df.columns:
            col = col.where(col.notna(), df[alias].map(_clean))
    return col


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Та же нормализация, но для целой таблицы.

    Возвращает DataFrame с колонками ``COLUMNS``; строки без id отбрасываются,
    при повторе id остаётся первая строка.
    """
    out = pd.DataFrame(index=df.index)
    for field in ALIASES:
        out[field] = _coalesce(df, field)
    out["inbreeding_coefficient"] = pd.to_numeric(
        out["inbreeding_coefficient"], errors="coerce"
    ).astype("float64")
    out = out[out["id"].notna()]
    out = out.drop_duplicates(subset="id", keep="first")
    return out.set_index("id", drop=False).rename_axis(None)


def _read_table(path: Path) -> pd.DataFrame:
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError) as e:
        raise RecordSourceError(f"Cannot read {path}: {e}") from e
    if not any(alias in df.columns for alias in ALIASES["id"]):
        raise RecordSourceError(f"{path} has no id column")
    return df


class _Table:
    """Исходная таблица как есть + её нормализованный вид для поиска."""

    def __init__(self, raw: pd.DataFrame):
        self.raw = raw.copy()
        self.view = normalize_frame(self.raw)
        self._ids = _coalesce(self.raw, "id")

    def set_coefficient(self, animal_id: str, value: float) -> None:
        if animal_id not in self.view.index:
            return
        self.view.at[animal_id, "inbreeding_coefficient"] = value
        # пишем в «родную» колонку таблицы, чужие колонки не трогаем
        col = next(
            (c for c in ALIASES["inbreeding_coefficient"] if c in self.raw.columns),
            "inbreeding_coefficient",
        )
        if col in self.raw.columns:
            self.raw[col] = self.raw[col].astype(object)
        else:
            self.raw[col] = pd.Series(None, index=self.raw.index, dtype=object)
        self.raw.loc[self._ids == animal_id, col] = value


class PedigreeStore:
    """
    Основная таблица животных + необязательная публичная копия.

    ``fetch`` ищет сначала в основной таблице, затем в публичной.
    ``save_coefficient`` пишет в обе; отсутствующая строка – не ошибка.
    ``write`` сохраняет таблицы с исходными колонками и строками,
    меняется только колонка коэффициента.
    """

    def __init__(self, animals: pd.DataFrame, public: pd.DataFrame | None = None):
        self._animals = _Table(animals)
        self._public = _Table(public) if public is not None else None

    @classmethod
    def from_dir(cls, data_dir: str | Path) -> "PedigreeStore":
        data_dir = Path(data_dir)
        if not data_dir.is_dir():
            raise RecordSourceError(f"Data directory not found: {data_dir}")
        animals = _read_table(data_dir / ANIMALS_FILE)
        public = None
        if (data_dir / PUBLIC_FILE).exists():
            public = _read_table(data_dir / PUBLIC_FILE)
        return cls(animals, public)

    @property
    def animals(self) -> pd.DataFrame:
        return self._animals.view

    @property
    def public(self) -> pd.DataFrame:
        if self._public is None:
            return normalize_frame(pd.DataFrame(columns=["id"]))
        return self._public.view

    def _tables(self) -> List[_Table]:
        return [t for t in (self._animals, self._public) if t is not None]

    def __len__(self) -> int:
        return len(self.animals)

    def records(self) -> List[PedigreeRecord]:
        return [_row_to_record(row) for row in self.animals.to_dict("records")]

    def get(self, animal_id: str) -> PedigreeRecord | None:
        for table in self._tables():
            if animal_id in table.view.index:
                return _row_to_record(table.view.loc[animal_id].to_dict())
        return None

    async def fetch(self, animal_id: str) -> PedigreeRecord | None:
        return self.get(animal_id)

    async def save_coefficient(self, animal_id: str, value: float) -> None:
        for table in self._tables():
            table.set_coefficient(animal_id, value)

    def write(self, data_dir: str | Path) -> None:
        data_dir = Path(data_dir)
        self._animals.raw.to_csv(data_dir / ANIMALS_FILE, index=False)
        if self._public is not None:
            self._public.raw.to_csv(data_dir / PUBLIC_FILE, index=False)


def _row_to_record(row: Dict) -> PedigreeRecord:
    coeff = row["inbreeding_coefficient"]
    return PedigreeRecord(
        id=row["id"],
        sire_id=_clean(row["sire_id"]),
        dam_id=_clean(row["dam_id"]),
        name=_clean(row["name"]),
        inbreeding_coefficient=None if pd.isna(coeff) else float(coeff),
    )
