from __future__ import annotations

from typing import Dict, List, Optional, Tuple


LANGUAGE_LABELS: Dict[str, str] = {
    "sv": "Swedish",
    "da": "Danish",
    "no": "Norwegian",
    "de": "German",
}

COUNTRY_BY_LANGUAGE: Dict[str, str] = {
    "sv": "SE",
    "da": "DK",
    "no": "NO",
    "de": "DE",
}

# Source names are Swedish; the model applies the same idea to any other name.
NAME_EXAMPLES: Dict[str, List[Tuple[str, str]]] = {
    "sv": [],
    "no": [
        ("Anna Lindberg", "Anne Haugen"),
        ("Peter Svensson", "Petter Johansen"),
        ("Erik Johansson", "Erik Hansen"),
    ],
    "da": [
        ("Anna Lindberg", "Anne Vestergaard"),
        ("Peter Svensson", "Peter Nielsen"),
        ("Erik Johansson", "Erik Jensen"),
    ],
    "de": [
        ("Anna Lindberg", "Anna Weber"),
        ("Peter Svensson", "Peter Müller"),
        ("Erik Johansson", "Erik Fischer"),
    ],
}

NEVER_TRANSLATE: List[str] = [
    "HappySleep",
    "Hydro13",
    "SwedishBalance",
    "Nordic Cradle",
    "OEKO-TEX",
    "CertiPUR-US",
    "Trustpilot",
]


def language_label(code: str) -> str:
    return LANGUAGE_LABELS.get(code, code)


def country_for(code: str) -> Optional[str]:
    return COUNTRY_BY_LANGUAGE.get(code)
