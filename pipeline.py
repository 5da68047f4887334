from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple, Union

from generation_utils import parse_stage_response
from prompt_builders import (
    CharacterInput,
    CompositionInput,
    InteriorInput,
    PipelineError,
    PreconditionError,
    build_character_request,
    build_composite_request,
    build_interior_request,
)
from prompts_lib import STAGE_CATALOGUE

logger = logging.getLogger(__name__)

StageInput = Union[CharacterInput, InteriorInput, CompositionInput]


class Stage(IntEnum):
    CHARACTER = 1
    INTERIOR = 2
    COMPOSITE = 3


class WriteMode(str, Enum):
    RESET = "reset"
    APPEND = "append"


class StageBusyError(PipelineError):
    """The stage already has a generation request in flight."""


class Completer(Protocol):
    def complete(self, instruction: str, system_instruction: str, response_schema: Dict[str, Any]) -> str:
        ...


_POSITIVE_FIELDS = {
    Stage.CHARACTER: ("character_prompt", "technical_settings"),
    Stage.INTERIOR: ("interior_prompt", "lighting_atmosphere"),
    Stage.COMPOSITE: ("master_prompt",),
}


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    timestamp: str
    stage: Stage
    fields: Mapping[str, Any]

    @classmethod
    def create(cls, stage: Stage, result: Mapping[str, Any]) -> "HistoryEntry":
        return cls(
            id=uuid.uuid4().hex,
            timestamp=datetime.now().strftime("%H:%M:%S"),
            stage=stage,
            fields=MappingProxyType(dict(result)),
        )

    @property
    def positive_prompt(self) -> str:
        parts = [str(self.fields.get(name) or "") for name in _POSITIVE_FIELDS[self.stage]]
        return ", ".join(part for part in parts if part)

    def result(self) -> Dict[str, Any]:
        return dict(self.fields)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "timestamp": self.timestamp, **self.fields}


class StageHistoryStore:
    """Newest-first log of accepted results for one stage.

    Entries are never edited or removed one by one; a reset write is the only
    way to shrink the log.
    """

    def __init__(self, stage: Stage) -> None:
        self.stage = stage
        self._entries: List[HistoryEntry] = []

    def write(self, result: Mapping[str, Any], mode: WriteMode = WriteMode.APPEND) -> HistoryEntry:
        entry = HistoryEntry.create(self.stage, result)
        if WriteMode(mode) is WriteMode.RESET:
            self._entries = [entry]
        else:
            self._entries.insert(0, entry)
        return entry

    def latest(self) -> Optional[HistoryEntry]:
        return self._entries[0] if self._entries else None

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def numbered(self) -> List[Tuple[int, HistoryEntry]]:
        # Oldest entry is generation #1.
        total = len(self._entries)
        return [(total - index, entry) for index, entry in enumerate(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(list(self._entries))


class PipelineCoordinator:
    """What each stage gets to see from the stages before it."""

    def __init__(self) -> None:
        self.active_stage = Stage.CHARACTER
        self._snapshots: Dict[Stage, Optional[Dict[str, Any]]] = {
            Stage.CHARACTER: None,
            Stage.INTERIOR: None,
        }

    @property
    def character(self) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshots[Stage.CHARACTER]
        return dict(snapshot) if snapshot is not None else None

    @property
    def interior(self) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshots[Stage.INTERIOR]
        return dict(snapshot) if snapshot is not None else None

    def accept(self, stage: Stage, result: Mapping[str, Any], navigate: bool = False) -> Stage:
        stage = Stage(stage)
        if stage in self._snapshots:
            self._snapshots[stage] = dict(result)
        if navigate and stage < Stage.COMPOSITE:
            self.active_stage = Stage(stage + 1)
        return self.active_stage

    def select_stage(self, stage: Stage) -> Stage:
        self.active_stage = Stage(stage)
        return self.active_stage


@dataclass
class StageOutcome:
    result: Dict[str, Any]
    entry: HistoryEntry
    navigate: bool = False


@dataclass
class PipelineSession:
    """One user's in-memory pipeline: coordinator, histories and busy flags."""

    completer: Optional[Completer] = None
    coordinator: PipelineCoordinator = field(default_factory=PipelineCoordinator)
    histories: Dict[Stage, StageHistoryStore] = field(
        default_factory=lambda: {stage: StageHistoryStore(stage) for stage in Stage}
    )
    _locks: Dict[Stage, threading.Lock] = field(
        default_factory=lambda: {stage: threading.Lock() for stage in Stage}, init=False, repr=False
    )

    def is_busy(self, stage: Stage) -> bool:
        return self._locks[Stage(stage)].locked()

    def build_instruction(self, stage: Stage, stage_input: StageInput) -> str:
        if stage is Stage.CHARACTER:
            return build_character_request(stage_input)
        if stage is Stage.INTERIOR:
            return build_interior_request(stage_input, self.coordinator.character)
        return build_composite_request(stage_input, self.coordinator.character, self.coordinator.interior)

    def generate(
        self,
        stage: Stage,
        stage_input: StageInput,
        mode: WriteMode = WriteMode.APPEND,
        navigate: bool = False,
        completer: Optional[Completer] = None,
    ) -> StageOutcome:
        stage = Stage(stage)
        completer = completer or self.completer
        if completer is None:
            raise PipelineError("No completion backend is configured.")
        if self.is_busy(stage):
            logger.info("Stage %d is busy, refusing resubmission", stage)
            raise StageBusyError(f"Stage {int(stage)} is already generating.")

        try:
            instruction = self.build_instruction(stage, stage_input)
        except PreconditionError as exc:
            logger.info("Stage %d precondition failed: %s", stage, exc)
            raise

        lock = self._locks[stage]
        if not lock.acquire(blocking=False):
            raise StageBusyError(f"Stage {int(stage)} is already generating.")
        try:
            catalogue = STAGE_CATALOGUE[int(stage)]
            logger.info("Stage %d generation started", stage)
            raw = completer.complete(
                instruction,
                catalogue["system_instruction"],
                catalogue["response_schema"],
            )
            result = parse_stage_response(raw, catalogue["response_schema"])
            entry = self.histories[stage].write(result, mode)
            self.coordinator.accept(stage, result, navigate)
        except Exception as exc:
            logger.warning("Stage %d generation failed: %s", stage, exc)
            raise
        finally:
            lock.release()

        logger.info("Stage %d generation accepted as %s (%s)", stage, entry.id, WriteMode(mode).value)
        return StageOutcome(result=result, entry=entry, navigate=navigate)

    def state(self) -> Dict[str, Any]:
        return {
            "active_stage": int(self.coordinator.active_stage),
            "character": self.coordinator.character,
            "interior": self.coordinator.interior,
            "busy": {int(stage): self.is_busy(stage) for stage in Stage},
            "history": {
                int(stage): [
                    {"generation": number, **entry.to_dict()} for number, entry in store.numbered()
                ]
                for stage, store in self.histories.items()
            },
        }
