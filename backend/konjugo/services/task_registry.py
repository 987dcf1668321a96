"""Task type registry: which task types exist, how they render, and their payload schemas.

The registry is an immutable object passed explicitly to the template generator,
sync plan calculator, and task selector. Tests can build a registry with a
subset of entries to simulate removed task types.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, Field

LexemePos = Literal["verb", "noun", "adjective"]
SUPPORTED_POS: tuple[str, ...] = ("verb", "noun", "adjective")

GenderValue = Literal["der", "die", "das", "der/die", "der/das", "die/das"]


class ExampleOut(BaseModel):
    de: Optional[str] = None
    en: Optional[str] = None


class RequestedForm(BaseModel):
    tense: Literal["present", "past", "participle"]
    mood: Optional[Literal["indicative", "subjunctive"]] = None
    person: Optional[int] = Field(default=None, ge=1, le=3)
    number: Optional[Literal["singular", "plural"]] = None
    voice: Optional[Literal["active", "passive"]] = None


class ConjugatePrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["verb"]
    requestedForm: RequestedForm
    cefrLevel: Optional[str] = None
    instructions: str = Field(min_length=1)
    example: Optional[ExampleOut] = None


class ConjugateSolution(BaseModel):
    form: str = Field(min_length=1)
    alternateForms: Optional[list[str]] = None


class NounDeclensionPrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["noun"]
    gender: Optional[GenderValue] = None
    requestedCase: Literal["nominative", "accusative", "dative", "genitive"]
    requestedNumber: Literal["singular", "plural"]
    instructions: str = Field(min_length=1)
    cefrLevel: Optional[str] = None
    example: Optional[ExampleOut] = None


class NounDeclensionSolution(BaseModel):
    form: str = Field(min_length=1)
    article: Optional[str] = None


class AdjectiveEndingPrompt(BaseModel):
    lemma: str = Field(min_length=1)
    pos: Literal["adjective"]
    degree: Literal["positive", "comparative", "superlative"]
    syntacticFrame: Optional[str] = None
    instructions: str = Field(min_length=1)
    cefrLevel: Optional[str] = None
    example: Optional[ExampleOut] = None


class AdjectiveEndingSolution(BaseModel):
    form: str = Field(min_length=1)


class UnknownTaskType(KeyError):
    """Raised when a task type is not present in the registry."""

    def __init__(self, task_type: str):
        super().__init__(task_type)
        self.task_type = task_type

    def __str__(self) -> str:
        return f"Unsupported task type: {self.task_type}"


@dataclass(frozen=True)
class TaskTypeEntry:
    task_type: str
    supported_pos: tuple[str, ...]
    renderer: str
    prompt_model: type[BaseModel]
    solution_model: type[BaseModel]
    default_queue_cap: int


class TaskRegistry:
    """Read-only mapping of task type -> TaskTypeEntry."""

    def __init__(self, entries: Iterable[TaskTypeEntry]):
        self._entries: Mapping[str, TaskTypeEntry] = MappingProxyType(
            {entry.task_type: entry for entry in entries}
        )

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def task_types(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def get(self, task_type: str) -> TaskTypeEntry:
        try:
            return self._entries[task_type]
        except KeyError:
            raise UnknownTaskType(task_type) from None

    def find(self, task_type: str) -> Optional[TaskTypeEntry]:
        return self._entries.get(task_type)

    def without(self, *task_types: str) -> "TaskRegistry":
        return TaskRegistry(e for t, e in self._entries.items() if t not in task_types)

    def validate_task(
        self,
        task_type: str,
        pos: str,
        renderer: str,
        prompt: dict,
        solution: dict,
    ) -> TaskTypeEntry:
        """Check a generated task against its registry entry.

        Raises UnknownTaskType, ValueError for pos/renderer mismatches, and
        pydantic.ValidationError when prompt or solution do not fit the schema.
        """
        entry = self.get(task_type)
        if pos not in entry.supported_pos:
            raise ValueError(
                f"Task type {task_type} does not support part of speech {pos}. "
                f"Supported: {', '.join(entry.supported_pos)}"
            )
        if entry.renderer != renderer:
            raise ValueError(
                f"Renderer mismatch for {task_type}: expected {entry.renderer} but received {renderer}"
            )
        entry.prompt_model.model_validate(prompt)
        entry.solution_model.model_validate(solution)
        return entry


DEFAULT_TASK_REGISTRY = TaskRegistry([
    TaskTypeEntry(
        task_type="conjugate_form",
        supported_pos=("verb",),
        renderer="conjugate_form",
        prompt_model=ConjugatePrompt,
        solution_model=ConjugateSolution,
        default_queue_cap=30,
    ),
    TaskTypeEntry(
        task_type="noun_case_declension",
        supported_pos=("noun",),
        renderer="noun_case_declension",
        prompt_model=NounDeclensionPrompt,
        solution_model=NounDeclensionSolution,
        default_queue_cap=25,
    ),
    TaskTypeEntry(
        task_type="adj_ending",
        supported_pos=("adjective",),
        renderer="adj_ending",
        prompt_model=AdjectiveEndingPrompt,
        solution_model=AdjectiveEndingSolution,
        default_queue_cap=20,
    ),
])
