from typing import Optional

from intake.models import SEQUENCE_FIELDS, FactSet, Parties


def _has_text(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _merge_parties(current: Optional[Parties], incoming: Optional[Parties]) -> Optional[Parties]:
    if incoming is None:
        return current
    base = current or Parties()
    return Parties(
        petitioner=incoming.petitioner if _has_text(incoming.petitioner) else base.petitioner,
        respondent=incoming.respondent if _has_text(incoming.respondent) else base.respondent,
    )


def merge_facts(current: FactSet, incoming: Optional[FactSet] = None) -> FactSet:
    """
    Combines an existing fact set with a partial one from the latest model turn.

    Additive, never regress:
    - no incoming facts returns `current` itself;
    - parties merge field by field, relationship is replaced only by a
      non-blank value;
    - a sequence field is replaced wholesale only when the incoming sequence
      is non-empty. An omitted or empty sequence keeps what we already had.

    Replacement is whole-sequence, not append: entries the model forgets to
    repeat in a later turn are dropped. That is a known limitation.

    Neither argument is mutated.
    """
    if incoming is None:
        return current

    updates = {
        "parties": _merge_parties(current.parties, incoming.parties),
        "relationship": incoming.relationship if _has_text(incoming.relationship) else current.relationship,
    }
    for field in SEQUENCE_FIELDS:
        incoming_items = getattr(incoming, field)
        updates[field] = incoming_items if incoming_items else getattr(current, field)

    return current.model_copy(update=updates)
