"""
Authoritative collection of intake cases.

Every mutation is a synchronous, atomic replacement of the addressed case
followed by change notification, so callers observe mutations in the order
they were made and listeners never see a half-applied change.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from intake.case_builder import (
    build_facts_from_intake,
    build_outputs_from_facts,
    derive_assumptions,
    derive_uncertainties,
)
from intake.coach import merge_outputs
from intake.exceptions import NotFoundError
from intake.merge_facts import merge_facts
from intake.models import (
    CaseFile,
    CaseOutputs,
    CaseStatus,
    CoachMessage,
    CoachSuggestion,
    FactSet,
    IntakeData,
    SafetyState,
    StoreSnapshot,
)

logger = logging.getLogger(__name__)

IMMEDIATE_DANGER_FLAG = "immediate_danger"

Listener = Callable[[], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CaseStore:
    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._cases: Dict[str, CaseFile] = {}
        self._active_case_id: Optional[str] = None
        self._listeners: List[Listener] = []

    # Observation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a listener fired after every committed mutation. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Case store listener failed: {e}", exc_info=True)

    # Queries

    @property
    def cases(self) -> List[CaseFile]:
        return list(self._cases.values())

    @property
    def active_case_id(self) -> Optional[str]:
        return self._active_case_id

    @property
    def active_case(self) -> Optional[CaseFile]:
        if self._active_case_id is None:
            return None
        return self._cases.get(self._active_case_id)

    def get_case(self, case_id: str) -> CaseFile:
        try:
            return self._cases[case_id]
        except KeyError:
            raise NotFoundError(f"Case '{case_id}' not found")

    # Mutations

    def _next_timestamp(self, previous: Optional[datetime] = None) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _commit(self, case_id: str, **changes: Any) -> CaseFile:
        current = self.get_case(case_id)
        changes["updated_at"] = self._next_timestamp(current.updated_at)
        updated = current.model_copy(update=changes)
        self._cases[case_id] = updated
        self._notify()
        return updated

    def create_case(self, initial_answers: Union[IntakeData, Mapping[str, Any], None] = None) -> str:
        """Creates a case in the interview stage from the intake answers and makes it active."""
        if isinstance(initial_answers, IntakeData):
            intake = initial_answers
        else:
            intake = IntakeData.model_validate(dict(initial_answers or {}))

        case_id = uuid.uuid4().hex
        created_at = self._next_timestamp()
        facts = build_facts_from_intake(intake)
        immediate_danger = intake.safety_status.lower() == "immediate danger"

        self._cases[case_id] = CaseFile(
            id=case_id,
            status=CaseStatus.INTERVIEW,
            facts=facts,
            outputs=CaseOutputs(),
            created_at=created_at,
            updated_at=created_at,
            intake=intake,
            assumptions=derive_assumptions(facts, intake),
            uncertainties=derive_uncertainties(facts, intake),
            safety=SafetyState(
                immediate_danger=immediate_danger,
                flags=[IMMEDIATE_DANGER_FLAG] if immediate_danger else [],
            ),
        )
        self._active_case_id = case_id
        logger.info(f"Created case {case_id}")
        self._notify()
        return case_id

    def update_facts(self, case_id: str, partial_facts: Union[FactSet, Mapping[str, Any], None]) -> CaseFile:
        if partial_facts is not None and not isinstance(partial_facts, FactSet):
            partial_facts = FactSet.model_validate(dict(partial_facts))
        current = self.get_case(case_id)
        return self._commit(case_id, facts=merge_facts(current.facts, partial_facts))

    def update_outputs(self, case_id: str, partial_outputs: Mapping[str, Any]) -> CaseFile:
        """Shallow-merges named artifacts into the case. Unknown artifact names raise ValueError."""
        current = self.get_case(case_id)
        known = {name: name for name in CaseOutputs.model_fields}
        known.update({info.alias: name for name, info in CaseOutputs.model_fields.items() if info.alias})

        unknown = [key for key in partial_outputs if key not in known]
        if unknown:
            raise ValueError(f"Unknown output artifact(s): {', '.join(sorted(unknown))}")

        merged = current.outputs.model_dump()
        merged.update({known[key]: value for key, value in partial_outputs.items()})
        return self._commit(case_id, outputs=CaseOutputs.model_validate(merged))

    def regenerate_outputs(self, case_id: str) -> CaseFile:
        current = self.get_case(case_id)
        return self._commit(case_id, outputs=build_outputs_from_facts(current.facts))

    def set_status(self, case_id: str, status: Union[CaseStatus, str]) -> CaseFile:
        # Transition order is the caller's responsibility.
        return self._commit(case_id, status=CaseStatus(status))

    def set_active_case(self, case_id: Optional[str]) -> None:
        if case_id is not None:
            self.get_case(case_id)
        self._active_case_id = case_id
        self._notify()

    def add_message(self, case_id: str, role: str, content: str) -> CoachMessage:
        current = self.get_case(case_id)
        message = CoachMessage(id=uuid.uuid4().hex, role=role, content=content, created_at=self._clock())
        self._commit(case_id, messages=[*current.messages, message])
        return message

    def apply_suggestion(self, case_id: str, suggestion: CoachSuggestion) -> CaseFile:
        """
        Folds one parsed coach turn into the case as a single mutation: merged
        facts, outputs (blank incoming artifacts keep the existing ones), safety
        flags and the assistant message.
        """
        current = self.get_case(case_id)
        changes: Dict[str, Any] = {
            "facts": merge_facts(current.facts, suggestion.extracted_facts),
            "outputs": merge_outputs(current.outputs, suggestion.extracted_outputs),
        }

        flags = list(dict.fromkeys([*current.safety.flags, *suggestion.safety_flags]))
        if flags != current.safety.flags:
            changes["safety"] = current.safety.model_copy(update={
                "flags": flags,
                "immediate_danger": current.safety.immediate_danger or IMMEDIATE_DANGER_FLAG in flags,
            })

        if suggestion.assistant_message:
            message = CoachMessage(
                id=uuid.uuid4().hex,
                role="assistant",
                content=suggestion.assistant_message,
                created_at=self._clock(),
            )
            changes["messages"] = [*current.messages, message]

        return self._commit(case_id, **changes)

    def set_assumptions(self, case_id: str, assumptions: List[str]) -> CaseFile:
        return self._commit(case_id, assumptions=list(assumptions))

    def set_uncertainties(self, case_id: str, uncertainties: List[str]) -> CaseFile:
        return self._commit(case_id, uncertainties=list(uncertainties))

    def set_safety(
        self,
        case_id: str,
        immediate_danger: bool,
        notes: Optional[str] = None,
        flags: Optional[List[str]] = None,
    ) -> CaseFile:
        current = self.get_case(case_id).safety
        safety = SafetyState(
            immediate_danger=immediate_danger,
            notes=notes or current.notes,
            flags=list(dict.fromkeys(flags)) if flags else current.flags,
        )
        return self._commit(case_id, safety=safety)

    def increment_turn(self, case_id: str) -> CaseFile:
        return self._commit(case_id, turn_count=self.get_case(case_id).turn_count + 1)

    def reset_turn(self, case_id: str) -> CaseFile:
        return self._commit(case_id, turn_count=0)

    def clear_all(self) -> None:
        self._cases = {}
        self._active_case_id = None
        self._notify()

    # Persistence

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(cases=self.cases, active_case_id=self._active_case_id)

    def serialize(self) -> str:
        return self.snapshot().model_dump_json(by_alias=True)

    def restore(self, snapshot: Union[StoreSnapshot, Mapping[str, Any]]) -> None:
        """Replaces the whole store state with the snapshot."""
        if not isinstance(snapshot, StoreSnapshot):
            snapshot = StoreSnapshot.model_validate(snapshot)
        cases = {c.id: c for c in snapshot.cases}
        active = snapshot.active_case_id if snapshot.active_case_id in cases else None
        self._cases = cases
        self._active_case_id = active
        self._notify()

    def deserialize(self, text: str) -> None:
        self.restore(StoreSnapshot.model_validate_json(text))

    @classmethod
    def from_json(cls, text: str, **kwargs: Any) -> "CaseStore":
        # No listeners exist yet, so restoring here notifies nobody.
        store = cls(**kwargs)
        store.deserialize(text)
        return store
