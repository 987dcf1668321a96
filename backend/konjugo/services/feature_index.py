"""Inflection lookup by grammatical features.

Inflection rows carry a feature map such as ``{"tense": "past", "person": 3,
"number": "singular"}``. Looking up e.g. "3rd person singular past indicative"
is done against a precomputed index keyed by the supported feature
combinations, with a linear scan over the rows as fallback for queries the
index cannot answer.

Values are compared case-insensitively after trimming. When several rows
satisfy the same combination the first registered row wins.
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Sequence, Union

from konjugo.config import settings

logger = logging.getLogger(__name__)

FeatureKey = Literal["tense", "mood", "person", "number", "aspect", "case", "degree"]
Scalar = Union[str, int, float, bool]
FeatureValue = Union[Scalar, list[Scalar]]
FeatureQuery = Mapping[str, Union[str, int]]

FEATURE_KEY_ORDER: tuple[str, ...] = ("tense", "mood", "person", "number", "aspect", "case", "degree")

SUPPORTED_FEATURE_COMBINATIONS: tuple[tuple[str, ...], ...] = (
    ("tense", "mood", "person", "number"),
    ("tense", "aspect"),
    ("tense",),
    ("case", "number"),
    ("degree",),
)

_KEY_SEP = "|"
_VALUE_SEP = "§"


def parse_features(raw: object) -> dict[str, FeatureValue]:
    """Keep only the known feature keys with scalar or list-of-scalar values."""
    if not isinstance(raw, Mapping):
        return {}
    features: dict[str, FeatureValue] = {}
    for key in FEATURE_KEY_ORDER:
        value = raw.get(key)
        if isinstance(value, (str, int, float, bool)):
            features[key] = value
        elif isinstance(value, (list, tuple)):
            scalars = [v for v in value if isinstance(v, (str, int, float, bool))]
            if scalars:
                features[key] = scalars
    return features


def normalise_feature_value(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        trimmed = value.strip().lower()
        return trimmed or None
    return None


def _ordered_keys(keys) -> list[str]:
    unique = set(keys)
    unknown = unique.difference(FEATURE_KEY_ORDER)
    if unknown:
        return []
    return [k for k in FEATURE_KEY_ORDER if k in unique]


def _feature_values(features: Mapping[str, FeatureValue], key: str) -> list[str]:
    raw = features.get(key)
    if raw is None:
        return []
    if isinstance(raw, list):
        values: list[str] = []
        for item in raw:
            normalised = normalise_feature_value(item)
            if normalised and normalised not in values:
                values.append(normalised)
        return values
    normalised = normalise_feature_value(raw)
    return [normalised] if normalised else []


def _clean_form(form: object) -> Optional[str]:
    if not isinstance(form, str):
        return None
    return form.strip() or None


def _matches_feature(features: Mapping[str, FeatureValue], key: str, expected) -> bool:
    value = features.get(key)
    if value is None:
        return False
    candidates = value if isinstance(value, list) else [value]
    if isinstance(expected, (int, float)) and not isinstance(expected, bool):
        for candidate in candidates:
            try:
                if float(candidate) == expected:
                    return True
            except (TypeError, ValueError):
                continue
        return False
    wanted = str(expected).strip().lower()
    return any(
        isinstance(candidate, str) and candidate.strip().lower() == wanted
        for candidate in candidates
    )


@dataclass
class InflectionEntry:
    id: str
    form: str
    features: dict[str, FeatureValue] = field(default_factory=dict)


def linear_search(entries: Sequence[InflectionEntry], query: FeatureQuery) -> Optional[str]:
    """First row whose features satisfy every key of the query."""
    for entry in entries:
        form = _clean_form(entry.form)
        if not form:
            continue
        if all(_matches_feature(entry.features, key, expected) for key, expected in query.items()):
            return form
    return None


class FeatureIndex:
    def __init__(self, entries: Sequence[InflectionEntry]):
        started = time.perf_counter() if settings.task_sync_profiling else None
        self._entries = list(entries)
        self._index: dict[str, dict[str, str]] = {}

        for entry in self._entries:
            form = _clean_form(entry.form)
            if not form:
                continue
            for combination in SUPPORTED_FEATURE_COMBINATIONS:
                matrix = [_feature_values(entry.features, key) for key in combination]
                if any(not values for values in matrix):
                    continue
                bucket = self._index.setdefault(_KEY_SEP.join(combination), {})
                for values in itertools.product(*matrix):
                    bucket.setdefault(_VALUE_SEP.join(values), form)

        if started is not None:
            logger.debug(
                "Built inflection index with %d entries in %.3fms",
                len(self._entries), (time.perf_counter() - started) * 1000,
            )

    def lookup(self, query: FeatureQuery) -> Optional[str]:
        if not query:
            return None
        started = time.perf_counter() if settings.task_sync_profiling else None
        result = self._lookup(query)
        if started is not None:
            logger.debug(
                "Lookup %s -> %s (%.3fms)",
                ",".join(_ordered_keys(query.keys())), result,
                (time.perf_counter() - started) * 1000,
            )
        return result

    def _lookup(self, query: FeatureQuery) -> Optional[str]:
        keys = _ordered_keys(query.keys())
        bucket = self._index.get(_KEY_SEP.join(keys)) if keys else None
        if bucket is not None:
            parts = []
            for key in keys:
                normalised = normalise_feature_value(query[key])
                if normalised is None:
                    return None
                parts.append(normalised)
            hit = bucket.get(_VALUE_SEP.join(parts))
            if hit:
                return hit
        return linear_search(self._entries, query)

    __call__ = lookup


SIMPLE_GENDERS = ("der", "die", "das")
COMPOUND_GENDERS = ("der/die", "der/das", "die/das")


def normalise_gender(value: Optional[str]) -> Optional[str]:
    """Map free-form gender strings onto der/die/das or a canonical compound.

    "die / der" -> "der/die", "das,der" -> "der/das"; anything with more than
    two tokens or an unknown token yields None.
    """
    if not value:
        return None
    normalised = value.strip().lower()
    if not normalised or normalised == "null":
        return None
    if normalised in SIMPLE_GENDERS or normalised in COMPOUND_GENDERS:
        return normalised

    tokens = [t.strip() for t in normalised.replace(",", "/").split("/") if t.strip()]
    if not tokens or len(tokens) > 2:
        return None
    unique = list(dict.fromkeys(tokens))
    if len(unique) == 1:
        return unique[0] if unique[0] in SIMPLE_GENDERS else None
    if any(token not in SIMPLE_GENDERS for token in unique):
        return None
    ordered = [g for g in SIMPLE_GENDERS if g in unique]
    compound = f"{ordered[0]}/{ordered[1]}"
    return compound if compound in COMPOUND_GENDERS else None
