"""
Display text for the legend: operator labels used by format_filter() and
a handful of captions.
"""
from __future__ import annotations

from typing import Callable, Optional

from config import settings

_CATALOGS: dict[str, dict[str, str]] = {
    "en": {
        "op_eq": "equals",
        "op_neq": "is not",
        "op_gt": "greater than",
        "op_gte": "greater than or equal to",
        "op_lt": "less than",
        "op_lte": "less than or equal to",
        "op_and": "and",
        "op_or": "or",
        "op_not": "not",
        "legend": "Legend",
        "scale": "Scale",
        "active": "(active)",
        "allFeaturesStyled": "All features covered by SLD",
        "unmatchedFeatures": "features not matched by any rule",
        "features": "features",
    },
    "es": {
        "op_eq": "igual a",
        "op_neq": "distinto de",
        "op_gt": "mayor que",
        "op_gte": "mayor o igual que",
        "op_lt": "menor que",
        "op_lte": "menor o igual que",
        "op_and": "y",
        "op_or": "o",
        "op_not": "no",
        "legend": "Leyenda",
        "scale": "Escala",
        "active": "(activa)",
        "allFeaturesStyled": "Todos los elementos cubiertos por el SLD",
        "unmatchedFeatures": "elementos sin regla asociada",
        "features": "elementos",
    },
    "ca": {
        "op_eq": "igual a",
        "op_neq": "diferent de",
        "op_gt": "més gran que",
        "op_gte": "més gran o igual que",
        "op_lt": "més petit que",
        "op_lte": "més petit o igual que",
        "op_and": "i",
        "op_or": "o",
        "op_not": "no",
        "legend": "Llegenda",
        "scale": "Escala",
        "active": "(activa)",
        "allFeaturesStyled": "Tots els elements coberts per l'SLD",
        "unmatchedFeatures": "elements sense cap regla",
        "features": "elements",
    },
}


def catalog(language: str | None) -> dict[str, str]:
    if language in _CATALOGS:
        return _CATALOGS[language]
    return _CATALOGS.get(settings.default_language, _CATALOGS["en"])


def text(language: str | None, key: str) -> str:
    return catalog(language).get(key, key)


def label_lookup(language: str | None) -> Callable[[str], Optional[str]]:
    """Operator tag ("eq", "and", ...) -> localized label, or None."""
    texts = catalog(language)
    return lambda tag: texts.get(f"op_{tag}")
