"""Build the per-lexeme source record that task templates are rendered from.

Rows coming out of storage are converted once into the typed ``LexemeRow`` and
``InflectionRow`` structures below; everything downstream works on those.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from konjugo.services.feature_index import (
    FeatureIndex,
    FeatureValue,
    InflectionEntry,
    normalise_gender,
    parse_features,
)
from konjugo.services.task_registry import SUPPORTED_POS

# Order in which example sentences are taken: lexeme metadata first, then the
# legacy words table.
EXAMPLE_SOURCE_PRIORITY: tuple[str, ...] = ("metadata", "fallback")


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def optional_str(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def optional_bool(value: object) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalised = value.strip().lower()
        if normalised == "true":
            return True
        if normalised == "false":
            return False
    return None


def pick_first(candidates: Iterable[Optional[str]]) -> Optional[str]:
    """First non-empty candidate, or None."""
    for candidate in candidates:
        if candidate:
            return candidate
    return None


def as_lexeme_pos(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalised = value.strip().lower()
    return normalised if normalised in SUPPORTED_POS else None


@dataclass
class LexemeRow:
    id: str
    lemma: str
    pos: str
    gender: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    frequency_rank: Optional[int] = None
    updated_at: Optional[datetime] = None
    fallback_example_de: Optional[str] = None
    fallback_example_en: Optional[str] = None

    def __post_init__(self):
        self.updated_at = to_utc(self.updated_at)
        if not isinstance(self.metadata, dict):
            self.metadata = {}


@dataclass
class InflectionRow:
    id: str
    lexeme_id: str
    form: str
    features: dict[str, FeatureValue] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.updated_at = to_utc(self.updated_at)
        self.features = parse_features(self.features)


@dataclass
class TaskTemplateSource:
    lexeme_id: str
    lemma: str
    pos: str
    level: Optional[str] = None
    english: Optional[str] = None
    example_de: Optional[str] = None
    example_en: Optional[str] = None
    gender: Optional[str] = None
    plural: Optional[str] = None
    separable: Optional[bool] = None
    aux: Optional[str] = None
    praesens_ich: Optional[str] = None
    praesens_er: Optional[str] = None
    praeteritum: Optional[str] = None
    partizip_ii: Optional[str] = None
    perfekt: Optional[str] = None
    comparative: Optional[str] = None
    superlative: Optional[str] = None


def resolve_examples(lexeme: LexemeRow) -> tuple[Optional[str], Optional[str]]:
    example = lexeme.metadata.get("example")
    if not isinstance(example, dict):
        example = {}

    by_source = {
        "metadata": (
            pick_first([optional_str(example.get("de")), optional_str(example.get("exampleDe"))]),
            pick_first([optional_str(example.get("en")), optional_str(example.get("exampleEn"))]),
        ),
        "fallback": (
            optional_str(lexeme.fallback_example_de),
            optional_str(lexeme.fallback_example_en),
        ),
    }
    example_de = pick_first(by_source[name][0] for name in EXAMPLE_SOURCE_PRIORITY)
    example_en = pick_first(by_source[name][1] for name in EXAMPLE_SOURCE_PRIORITY)

    # An "English" example identical to the German one is an untranslated copy.
    fallback_en = by_source["fallback"][1]
    if fallback_en and example_de and example_en == example_de:
        example_en = fallback_en
    return example_de, example_en


def build_task_source(
    lexeme: LexemeRow,
    inflections: Sequence[InflectionRow],
) -> Optional[TaskTemplateSource]:
    pos = as_lexeme_pos(lexeme.pos)
    lemma = optional_str(lexeme.lemma)
    if pos is None or lemma is None:
        return None

    metadata = lexeme.metadata
    example_de, example_en = resolve_examples(lexeme)
    source = TaskTemplateSource(
        lexeme_id=lexeme.id,
        lemma=lemma,
        pos=pos,
        level=optional_str(metadata.get("level")),
        english=optional_str(metadata.get("english")),
        example_de=example_de,
        example_en=example_en,
        gender=normalise_gender(optional_str(lexeme.gender)),
        separable=optional_bool(metadata.get("separable")),
        aux=optional_str(metadata.get("auxiliary")),
        perfekt=optional_str(metadata.get("perfekt")),
    )

    find = FeatureIndex(
        [InflectionEntry(id=row.id, form=row.form, features=row.features) for row in inflections]
    )

    if pos == "verb":
        source.praesens_ich = find({"tense": "present", "mood": "indicative", "person": 1, "number": "singular"})
        source.praesens_er = find({"tense": "present", "mood": "indicative", "person": 3, "number": "singular"})
        source.praeteritum = find({"tense": "past", "mood": "indicative", "person": 3, "number": "singular"})
        source.partizip_ii = find({"tense": "participle", "aspect": "perfect"})
        source.perfekt = source.perfekt or find({"tense": "perfect"})
    elif pos == "noun":
        source.plural = find({"case": "nominative", "number": "plural"})
    elif pos == "adjective":
        source.comparative = find({"degree": "comparative"})
        source.superlative = find({"degree": "superlative"})

    return source
