"""Render practice task specs from a TaskTemplateSource.

Each part of speech has an ordered list of templates. A template is rendered
only when the source carries the form it asks for; rendered prompts and
solutions are validated against the registry before being emitted.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from konjugo.services.task_registry import DEFAULT_TASK_REGISTRY, TaskRegistry
from konjugo.services.task_source import TaskTemplateSource

logger = logging.getLogger(__name__)


@dataclass
class GeneratedTaskSpec:
    id: str
    lexeme_id: str
    pos: str
    task_type: str
    renderer: str
    prompt: dict
    solution: dict
    hints: Optional[list]
    metadata: Optional[dict]
    revision: int


@dataclass(frozen=True)
class TaskTemplate:
    key: str
    task_type: str
    form: Callable[[TaskTemplateSource], Optional[str]]
    prompt: Callable[[TaskTemplateSource], dict]
    solution: Callable[[TaskTemplateSource], dict]
    metadata: Optional[Callable[[TaskTemplateSource], dict]] = None


def _example(source: TaskTemplateSource) -> Optional[dict]:
    payload = {}
    if source.example_de:
        payload["de"] = source.example_de
    if source.example_en:
        payload["en"] = source.example_en
    return payload or None


def _verb_prompt(requested_form: dict, instructions: str):
    def build(source: TaskTemplateSource) -> dict:
        return {
            "lemma": source.lemma,
            "pos": source.pos,
            "requestedForm": requested_form,
            "cefrLevel": source.level,
            "instructions": instructions.format(lemma=source.lemma),
            "example": _example(source),
        }
    return build


def _verb_metadata(source: TaskTemplateSource) -> dict:
    return {"aux": source.aux, "separable": source.separable}


def _adjective_prompt(degree: str, instructions: str, frame: str):
    def build(source: TaskTemplateSource) -> dict:
        return {
            "lemma": source.lemma,
            "pos": source.pos,
            "degree": degree,
            "cefrLevel": source.level,
            "instructions": instructions.format(lemma=source.lemma),
            "example": _example(source),
            "syntacticFrame": frame,
        }
    return build


_PRESENT_1SG = {"tense": "present", "mood": "indicative", "person": 1, "number": "singular"}
_PRESENT_3SG = {"tense": "present", "mood": "indicative", "person": 3, "number": "singular"}
_PAST_3SG = {"tense": "past", "mood": "indicative", "person": 3, "number": "singular"}
_PARTICIPLE = {"tense": "participle", "mood": "indicative", "voice": "active"}

TASK_TEMPLATES: dict[str, tuple[TaskTemplate, ...]] = {
    "verb": (
        TaskTemplate(
            key="praesens_ich",
            task_type="conjugate_form",
            form=lambda s: s.praesens_ich,
            prompt=_verb_prompt(_PRESENT_1SG, 'Konjugiere "{lemma}" in der Präsensform (ich).'),
            solution=lambda s: {"form": s.praesens_ich},
            metadata=_verb_metadata,
        ),
        TaskTemplate(
            key="praesens_er",
            task_type="conjugate_form",
            form=lambda s: s.praesens_er,
            prompt=_verb_prompt(_PRESENT_3SG, 'Konjugiere "{lemma}" in der Präsensform (er/sie/es).'),
            solution=lambda s: {"form": s.praesens_er},
            metadata=_verb_metadata,
        ),
        TaskTemplate(
            key="praeteritum",
            task_type="conjugate_form",
            form=lambda s: s.praeteritum,
            prompt=_verb_prompt(_PAST_3SG, 'Konjugiere "{lemma}" in der Präteritumform (er/sie/es).'),
            solution=lambda s: {"form": s.praeteritum},
            metadata=_verb_metadata,
        ),
        TaskTemplate(
            key="partizip_ii",
            task_type="conjugate_form",
            form=lambda s: s.partizip_ii,
            prompt=_verb_prompt(_PARTICIPLE, 'Gib das Partizip II von "{lemma}" an.'),
            solution=lambda s: {"form": s.partizip_ii},
            metadata=_verb_metadata,
        ),
    ),
    "noun": (
        TaskTemplate(
            key="accusative_plural",
            task_type="noun_case_declension",
            form=lambda s: s.plural,
            prompt=lambda s: {
                "lemma": s.lemma,
                "pos": s.pos,
                "gender": s.gender,
                "requestedCase": "accusative",
                "requestedNumber": "plural",
                "cefrLevel": s.level,
                "instructions": f'Bilde die Akkusativ Plural-Form von "{s.lemma}".',
                "example": _example(s),
            },
            solution=lambda s: {"form": s.plural, "article": s.gender},
            metadata=lambda s: {"article": s.gender},
        ),
    ),
    "adjective": (
        TaskTemplate(
            key="comparative",
            task_type="adj_ending",
            form=lambda s: s.comparative,
            prompt=_adjective_prompt("comparative", 'Bilde den Komparativ von "{lemma}".', "Der ____ Wagen ist schneller."),
            solution=lambda s: {"form": s.comparative},
        ),
        TaskTemplate(
            key="superlative",
            task_type="adj_ending",
            form=lambda s: s.superlative,
            prompt=_adjective_prompt("superlative", 'Bilde den Superlativ von "{lemma}".', "Das ist der ____ Moment."),
            solution=lambda s: {"form": s.superlative},
        ),
    ),
}


def prune_none(value: dict) -> dict:
    return {k: v for k, v in value.items() if v is not None}


def create_task_id(lexeme_id: str, task_type: str, revision: int, discriminator: str) -> str:
    digest = hashlib.sha1(f"{lexeme_id}:{task_type}:{revision}:{discriminator}".encode("utf-8")).hexdigest()
    return f"task:{lexeme_id}:{task_type}:{revision}:{digest[:8]}"


def build_hints(source: TaskTemplateSource) -> list[dict]:
    hints = []
    if source.example_de:
        hints.append({"type": "example_de", "value": source.example_de})
    if source.example_en:
        hints.append({"type": "example_en", "value": source.example_en})
    if source.perfekt and source.aux:
        hints.append({"type": "auxiliary", "value": source.aux})
    return hints


def generate_task_specs(
    source: TaskTemplateSource,
    registry: TaskRegistry = DEFAULT_TASK_REGISTRY,
) -> list[GeneratedTaskSpec]:
    """Render every available template for the source's part of speech.

    Revisions count the rendered templates per lexeme starting at 1, so a
    template becoming available or unavailable shifts the ids that follow it.
    """
    tasks: list[GeneratedTaskSpec] = []
    revision = 0

    for template in TASK_TEMPLATES.get(source.pos, ()):
        if not template.form(source):
            continue

        entry = registry.find(template.task_type)
        if entry is None:
            continue

        prompt = prune_none(template.prompt(source))
        solution = prune_none(template.solution(source))
        try:
            registry.validate_task(template.task_type, source.pos, entry.renderer, prompt, solution)
        except (ValidationError, ValueError) as e:
            logger.warning(
                "Skipping template %s for lexeme %s: %s", template.key, source.lexeme_id, e,
            )
            continue

        revision += 1
        hints = build_hints(source)
        metadata = prune_none(template.metadata(source)) if template.metadata else {}

        tasks.append(GeneratedTaskSpec(
            id=create_task_id(source.lexeme_id, template.task_type, revision, template.key),
            lexeme_id=source.lexeme_id,
            pos=source.pos,
            task_type=template.task_type,
            renderer=entry.renderer,
            prompt=prompt,
            solution=solution,
            hints=hints or None,
            metadata=metadata or None,
            revision=revision,
        ))

    return tasks
