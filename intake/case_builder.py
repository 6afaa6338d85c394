from typing import List

from intake.models import CaseOutputs, FactSet, Incident, IntakeData, Parties
from intake.utils.text import format_date_time, split_list

STANDARD_EVIDENCE = [
    "Screenshots of threatening texts, emails, or social media messages",
    "Photos of injuries (with dates visible if possible)",
    "Photos of property damage",
    "Medical records documenting injuries",
    "Police reports or incident numbers",
    "Names and contact information for witnesses",
    "Prior orders of protection or related court documents",
    "Documentation of stalking behavior (logs with dates/times/locations)",
    "Financial records if economic abuse is involved",
]

WHAT_TO_BRING = [
    "A government-issued photo ID",
    "All evidence from your evidence checklist (originals AND copies for the court)",
    "Written notes with key dates, times, and locations for each incident (most recent, first, and worst)",
    "If there were verbal threats, write down the EXACT WORDS used",
    "Names, addresses, and phone numbers of witnesses",
    "Information about children (names, ages, schools, custody arrangements)",
    "Any existing orders of protection, custody orders, or related court documents with case numbers",
    "Case numbers for any related family, criminal, or supreme court matters",
    "If you need address confidentiality, be ready to file form GF-21 (do NOT write your address on the petition)",
    "Contact info for your local domestic violence advocate or hotline (if applicable)",
    "Proof of income (pay stubs, tax returns, benefits letters) if requesting temporary child support",
    "Phone records or device screenshots showing calls, texts, or location tracking",
    "Paternity documents (birth certificate, acknowledgment of paternity, DNA test) if relevant",
    "Prior custody or divorce orders/agreements between the parties",
]

WHAT_TO_EXPECT = [
    "Step 1: Go to the Help Center ('Petition Room') at Family Court. A clerk will help draft your "
    "Family Offense Petition. No filing fees.",
    "Step 2: Complete paperwork carefully. Include the most recent incident, the first incident, and the "
    "worst incident with all details.",
    "Step 3: See the judge for a Temporary Order of Protection (usually same day). Hit 3 points: "
    "(1) most recent incident, (2) why risk is ongoing, (3) exact relief you want.",
    "Step 4: If granted, you'll get a temporary order + summons. The order is NOT enforceable until served "
    "on the respondent.",
    "Step 5: Serve the respondent (you CANNOT do this yourself). Use sheriff, police, a friend over 18, "
    "or a process server.",
    "Step 6: Return date. If respondent doesn't appear, judge may issue final order same day. If they "
    "appear, options are consent order or trial.",
    "Step 7: At trial (fact-finding), prove your case by 'fair preponderance of evidence' (more likely "
    "than not). Bring all evidence and witnesses.",
    "Final orders last up to 2 years (5 years with aggravating circumstances). If you can't afford a "
    "lawyer, ask the judge for a court-appointed attorney.",
]

DISCLAIMER = "This information is for preparation purposes only and is not legal advice."


def build_facts_from_intake(intake: IntakeData) -> FactSet:
    """Seeds a case's fact set from the intake questionnaire."""
    date, time = format_date_time(intake.most_recent_incident_at)
    relationship = " / ".join(v for v in (intake.relationship_category, intake.cohabitation) if v)

    incidents = None
    if date or intake.pattern_of_incidents or intake.incident_location:
        incidents = [
            Incident(
                date=date,
                time=time,
                location=intake.incident_location,
                what_happened=intake.pattern_of_incidents,
                witnesses=f"Children status: {intake.children_involved}" if intake.children_involved else "",
                evidence=intake.evidence_inventory,
            )
        ]

    safety_concerns = [
        f"Safety status: {intake.safety_status}" if intake.safety_status else "",
        f"Firearms access: {intake.firearms_access}" if intake.firearms_access else "",
    ]

    timeline = [
        f"Most recent incident on {date}{f' at {time}' if time else ''}." if date else "",
        f"Pattern: {intake.pattern_of_incidents}" if intake.pattern_of_incidents else "",
        f"Existing cases/orders: {intake.existing_cases_orders}" if intake.existing_cases_orders else "",
    ]

    return FactSet(
        parties=Parties(
            petitioner=intake.petitioner_name or "Petitioner",
            respondent=intake.respondent_name or "Respondent",
        ),
        relationship=relationship or None,
        incidents=incidents,
        safety_concerns=[s for s in safety_concerns if s],
        requested_relief=split_list(intake.requested_relief),
        evidence_list=split_list(intake.evidence_inventory),
        timeline=[t for t in timeline if t],
    )


def _describe_incident(incident: Incident) -> str:
    parts = [incident.date or "Date unknown"]
    if incident.time:
        parts.append(f" at {incident.time}")
    if incident.location:
        parts.append(f" at {incident.location}")
    if incident.what_happened:
        parts.append(f" - {incident.what_happened}")
    return "".join(parts).strip()


def build_outputs_from_facts(facts: FactSet) -> CaseOutputs:
    """Drafts the hearing script, outline, checklists and timeline from the current facts."""
    parties = facts.parties or Parties()
    petitioner = parties.petitioner or "Petitioner"
    respondent = parties.respondent or "Respondent"
    incidents = facts.incidents or []
    safety_concerns = facts.safety_concerns or []
    requested_relief = facts.requested_relief or []
    evidence_list = facts.evidence_list or []

    timeline_source = facts.timeline or [_describe_incident(i) for i in incidents]
    most_recent = incidents[0] if incidents else None
    has_multiple = len(incidents) > 1

    if most_recent and most_recent.what_happened:
        incident_summary = f"On {most_recent.date or 'a recent date'}, {most_recent.what_happened}"
    else:
        incident_summary = timeline_source[0] if timeline_source else "I need to describe what happened"

    script_parts = [
        f"Your Honor, my name is {petitioner}. I am here to request an Order of Protection against {respondent}.",
        f"{respondent} is my {facts.relationship.lower()}." if facts.relationship else "",
        incident_summary.rstrip(".") + ".",
        f"Reported injuries: {most_recent.injuries}." if most_recent and most_recent.injuries else "",
        f"Threats made: {most_recent.threats}." if most_recent and most_recent.threats else "",
        f"My safety concerns include: {'; '.join(safety_concerns)}." if safety_concerns else "",
        f"There have been {len(incidents)} incidents that I can describe." if has_multiple else "",
        f"I am requesting: {'; '.join(requested_relief)}." if requested_relief
        else "I am requesting the court's protection.",
        f"I have evidence including: {', '.join(evidence_list[:3])}." if evidence_list else "",
        DISCLAIMER,
    ]

    witnesses = [i.witnesses for i in incidents if i.witnesses]
    outline_5min = [
        f"State your name and your relationship to {respondent} ({facts.relationship or 'describe the relationship'}).",
        f"Describe the most recent incident on {most_recent.date}: what happened, where, and who was present."
        if most_recent and most_recent.date
        else "Describe the most recent incident: date, time, location, and exactly what happened.",
        f"Detail the injuries: {most_recent.injuries}. Mention any medical treatment received."
        if most_recent and most_recent.injuries
        else "Describe any injuries sustained and whether you sought medical treatment.",
        f"Recount threats made: \"{most_recent.threats}\". Use the other person's exact words if possible."
        if most_recent and most_recent.threats
        else "Describe any threats made, using the other person's exact words if you can remember them.",
        f"Describe the pattern: {len(incidents)} incidents showing escalation over time."
        if has_multiple
        else "Explain whether this is part of a broader pattern of behavior and if the situation has escalated.",
        f"Address safety concerns: {'; '.join(safety_concerns)}."
        if safety_concerns
        else "Explain your current safety concerns and why you need the court's protection.",
        f"Mention witnesses: {'; '.join(witnesses)}."
        if witnesses
        else "Note any witnesses who can corroborate your account.",
        "State the specific protections you are requesting and why each is necessary.",
        "Mention the evidence you have brought and offer to present it to the court.",
    ]

    case_specific = [f"{e} (mentioned in your account)" for e in evidence_list]
    evidence_checklist = case_specific + [
        item for item in STANDARD_EVIDENCE
        if not any(item.lower()[:20] in e.lower() for e in case_specific)
    ]

    return CaseOutputs(
        script_2min=" ".join(p for p in script_parts if p),
        outline_5min=outline_5min,
        evidence_checklist=evidence_checklist,
        timeline_summary=timeline_source or ["Add dates and key incidents to build a timeline."],
        what_to_bring=list(WHAT_TO_BRING),
        what_to_expect=list(WHAT_TO_EXPECT),
    )


def derive_assumptions(facts: FactSet, intake: IntakeData) -> List[str]:
    assumptions = []
    if not intake.petitioner_name:
        assumptions.append("Petitioner name not provided. The court will need this for the petition.")
    if not intake.respondent_name:
        assumptions.append("Respondent name not provided. It is required for service of process.")
    if not intake.most_recent_incident_at:
        assumptions.append("Most recent incident date/time unknown. Approximate dates can be used.")
    if not facts.requested_relief:
        assumptions.append(
            "Specific relief not yet requested. Common protections include stay-away, no contact, "
            "and temporary custody."
        )
    if not intake.firearms_access:
        assumptions.append("Firearms access status unknown. The court is required to inquire about this.")
    if not intake.children_involved:
        assumptions.append("Children's involvement status not specified.")
    if len(facts.incidents or []) <= 1 and not intake.pattern_of_incidents:
        assumptions.append(
            "Only one incident described. Courts look favorably on evidence of a pattern; "
            "consider adding earlier incidents if they exist."
        )
    return assumptions


def derive_uncertainties(facts: FactSet, intake: IntakeData) -> List[str]:
    incidents = facts.incidents or []
    uncertainties = []
    if not intake.pattern_of_incidents:
        uncertainties.append("Pattern of incidents not yet described. Is the behavior escalating?")
    if not intake.existing_cases_orders:
        uncertainties.append("Unknown whether prior cases or orders exist between the parties.")
    if not intake.evidence_inventory:
        uncertainties.append("Evidence inventory not listed yet. Documentation strengthens the petition.")
    if not incidents or not incidents[0].location:
        uncertainties.append("Incident location(s) missing. They are needed for the petition.")
    if any(not i.threats and not i.injuries for i in incidents):
        uncertainties.append(
            "Some incidents are missing details about threats or injuries. These details matter for the court."
        )
    if not any(i.witnesses for i in incidents):
        uncertainties.append("No witnesses identified. Consider whether anyone saw or heard what happened.")
    return uncertainties
