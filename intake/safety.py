"""
Danger-pattern detection for the domestic violence / order of protection intake.

This is a best-effort lexical heuristic. It will miss danger that is described
indirectly, misspelled or written in another language, so a False result never
means the litigant is safe. Callers decide what to do with a True result
(typically interrupting the interview with emergency resources).
"""
import re
from typing import List, Literal, NamedTuple

from pydantic import BaseModel, Field


class DangerPattern(NamedTuple):
    pattern: re.Pattern
    severity: Literal["high", "critical"]
    category: str


def _p(regex: str, severity: Literal["high", "critical"], category: str) -> DangerPattern:
    return DangerPattern(re.compile(regex, re.IGNORECASE), severity, category)


DANGER_PATTERNS: List[DangerPattern] = [
    # Critical: immediate life threats
    _p(r"immediate danger", "critical", "imminent_threat"),
    _p(r"in danger right now", "critical", "imminent_threat"),
    _p(r"(?:hurting|attacking|hitting|chasing)\s+me\s+right now", "critical", "imminent_threat"),
    _p(r"(?:he|she|they)(?:'s|'re|\s+is|\s+are)\s+(?:here|outside|at the door)\s+right now", "critical", "imminent_threat"),
    _p(r"threaten(?:ed|ing)?\s+to\s+kill", "critical", "death_threat"),
    _p(r"going to kill", "critical", "death_threat"),
    _p(r"said\s+(?:he|she|they)\s+(?:will|would|is going to|are going to)\s+kill", "critical", "death_threat"),
    _p(r"gun\s+(?:to|at|on|pointed)", "critical", "weapon_use"),
    _p(r"pointed\s+(?:a\s+)?(?:gun|firearm|weapon|knife)", "critical", "weapon_use"),
    _p(r"strangle[ds]?|strangulation|strangling", "critical", "strangulation"),
    _p(r"chok(?:ed|es|ing)\s+(?:me|him|her|them)", "critical", "strangulation"),
    _p(r"(?:hands?|arm)\s+(?:around|on)\s+(?:my|the|his|her)\s+(?:neck|throat)", "critical", "strangulation"),
    _p(r"can'?t\s+(?:breathe|breath)", "critical", "strangulation"),
    _p(
        r"threaten(?:ed|ing|s)?\s+(?:to\s+)?(?:harm|hurt|injure)\s+(?:the\s+|my\s+|our\s+)?(?:child|kid|baby|son|daughter)",
        "critical", "child_threat",
    ),
    _p(r"kill\s+(?:my\s*self|himself|herself|themsel(?:f|ves))", "critical", "suicide_threat"),
    _p(r"threaten(?:ed|ing)?\s+(?:to\s+)?(?:commit\s+)?suicide", "critical", "suicide_threat"),
    _p(r"(?:bought|purchased|acquired|got)\s+(?:a\s+)?(?:gun|firearm|weapon)", "critical", "weapon_acquisition"),

    # High: serious safety concerns
    _p(r"gun|firearm", "high", "weapons"),
    _p(r"weapon|knife|\bbat\b|crowbar", "high", "weapons"),
    _p(r"can'?t\s+stay\s+safe", "high", "unsafe"),
    _p(r"not\s+safe|don'?t\s+feel\s+safe|afraid\s+to\s+go\s+home", "high", "unsafe"),
    _p(r"stalking|followed\s+me|tracking\s+(?:me|my)", "high", "stalking"),
    _p(r"showing\s+up\s+(?:at|to)\s+(?:my|the)\s+(?:work|job|school|home)", "high", "stalking"),
    _p(r"monitor(?:s|ed|ing)\s+(?:my|the)\s+(?:phone|email|social|location)", "high", "stalking"),
    _p(r"sexual(?:ly)?\s+(?:assault|abuse|force|attack)", "high", "sexual_violence"),
    _p(r"\brap(?:e[ds]?|ing)\b", "high", "sexual_violence"),
    _p(r"forc(?:ed|ing)\s+(?:me\s+)?(?:to\s+)?(?:have\s+)?sex", "high", "sexual_violence"),
    _p(
        r"hit\s+(?:me|him|her)|punch(?:ed|ing)|kick(?:ed|ing)|slap(?:ped|ping)|shov(?:ed|ing)|threw\s+(?:me|him|her)",
        "high", "physical_violence",
    ),
    _p(r"broke\s+(?:my|his|her)\s+(?:arm|nose|rib|bone|jaw|tooth)", "high", "physical_violence"),
    _p(r"black\s+eye|bruise[ds]?|concussion|fracture[ds]?|hospitali[sz]e[ds]?", "high", "injuries"),
    _p(
        r"(?:isolat|prevent|forbid|won'?t\s+let)\w*\s+(?:me|him|her)\s+(?:from\s+)?(?:see|leav|go|talk|contact|call)",
        "high", "isolation",
    ),
    _p(r"took\s+(?:my|the)\s+(?:phone|keys|car|money|passport|documents)", "high", "coercive_control"),
    _p(
        r"(?:drunk|intoxicated|high|using\s+drugs?)\s+(?:when|and)\s+(?:he|she|they)\s+(?:hit|punch|kick|attack|assault|threaten)",
        "high", "substance_abuse",
    ),
    _p(r"violat(?:ed|ing|es?)\s+(?:the\s+)?(?:order|OP|restraining)", "high", "order_violation"),
    _p(
        r"threaten(?:ed|ing|s)?\s+(?:to\s+)?(?:take|kidnap|abduct)\s+(?:the\s+|my\s+|our\s+)?(?:child|kid|baby|son|daughter)",
        "high", "child_threat",
    ),
    _p(r"threaten(?:ed|ing|s)?\s+(?:to\s+)?(?:hurt|harm|kill)\s+(?:my|the|our)\s+(?:pet|dog|cat|animal)", "high", "animal_threat"),
    _p(r"(?:killed|hurt|harmed)\s+(?:my|the|our)\s+(?:pet|dog|cat|animal)", "high", "animal_threat"),
]


class DangerResult(BaseModel):
    immediate_danger: bool = False
    severity: Literal["none", "high", "critical"] = "none"
    matched_categories: List[str] = Field(default_factory=list)


def detect_danger(text: str) -> DangerResult:
    """Scans text against every danger pattern and reports severity and categories."""
    if not text or not isinstance(text, str):
        return DangerResult()

    matched = [dp for dp in DANGER_PATTERNS if dp.pattern.search(text)]
    if not matched:
        return DangerResult()

    has_critical = any(dp.severity == "critical" for dp in matched)
    categories = list(dict.fromkeys(dp.category for dp in matched))

    return DangerResult(
        immediate_danger=has_critical,
        severity="critical" if has_critical else "high",
        matched_categories=categories,
    )


def detect_immediate_danger(text: str) -> bool:
    """True if any critical pattern matches. Total over all strings, including ''."""
    return detect_danger(text).immediate_danger
