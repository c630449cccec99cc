"""Коэффициент инбридинга по Райту: одиночный расчёт, пары и пересчёт популяции."""
