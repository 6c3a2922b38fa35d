# app/core/contract_templates.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from app.models.enums import ContractType


@dataclass(frozen=True)
class ContractTemplate:
    display_name: str
    sections: Tuple[Tuple[str, str], ...]  # (section id, title)
    requires_total: bool


CONTRACT_TEMPLATES: Dict[ContractType, ContractTemplate] = {
    ContractType.MSA: ContractTemplate(
        display_name="Master Services Agreement",
        sections=(
            ("parties", "Parties and Definitions"),
            ("services", "Scope of Services"),
            ("term", "Term and Termination"),
            ("payment", "Payment Terms"),
            ("ip", "Intellectual Property"),
            ("confidentiality", "Confidentiality"),
            ("liability", "Limitation of Liability"),
            ("indemnification", "Indemnification"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=False,
    ),
    ContractType.SOW: ContractTemplate(
        display_name="Statement of Work",
        sections=(
            ("parties", "Parties"),
            ("background", "Background"),
            ("scope", "Scope of Work"),
            ("deliverables", "Deliverables"),
            ("timeline", "Timeline"),
            ("fees", "Fees and Payment"),
            ("acceptance", "Acceptance Criteria"),
            ("signatures", "Signatures"),
        ),
        requires_total=True,
    ),
    ContractType.MSA_WITH_SOW: ContractTemplate(
        display_name="Master Services Agreement with SOW",
        sections=(
            ("parties", "Parties and Definitions"),
            ("msa_terms", "Master Agreement Terms"),
            ("scope", "Scope of Work"),
            ("deliverables", "Deliverables"),
            ("timeline", "Timeline"),
            ("payment", "Payment Terms"),
            ("ip", "Intellectual Property"),
            ("confidentiality", "Confidentiality"),
            ("liability", "Limitation of Liability"),
            ("termination", "Termination"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=True,
    ),
    ContractType.NDA: ContractTemplate(
        display_name="Non-Disclosure Agreement",
        sections=(
            ("parties", "Parties"),
            ("purpose", "Purpose"),
            ("definition", "Definition of Confidential Information"),
            ("obligations", "Obligations of Receiving Party"),
            ("exclusions", "Exclusions"),
            ("term", "Term"),
            ("remedies", "Remedies"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=False,
    ),
    ContractType.CONSULTING_AGREEMENT: ContractTemplate(
        display_name="Consulting Agreement",
        sections=(
            ("parties", "Parties"),
            ("engagement", "Engagement"),
            ("services", "Services"),
            ("compensation", "Compensation"),
            ("expenses", "Expenses"),
            ("term", "Term and Termination"),
            ("relationship", "Independent Contractor Relationship"),
            ("confidentiality", "Confidentiality"),
            ("ip", "Intellectual Property"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=True,
    ),
    ContractType.RETAINER_AGREEMENT: ContractTemplate(
        display_name="Retainer Agreement",
        sections=(
            ("parties", "Parties"),
            ("services", "Retainer Services"),
            ("scope", "Scope and Hours"),
            ("fees", "Retainer Fees"),
            ("payment", "Payment Terms"),
            ("rollover", "Hour Rollover Policy"),
            ("term", "Term and Renewal"),
            ("termination", "Termination"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=True,
    ),
    ContractType.AMENDMENT: ContractTemplate(
        display_name="Contract Amendment",
        sections=(
            ("parties", "Parties"),
            ("recitals", "Recitals"),
            ("amendments", "Amendments"),
            ("effect", "Effect of Amendment"),
            ("signatures", "Signatures"),
        ),
        requires_total=False,
    ),
    ContractType.OTHER: ContractTemplate(
        display_name="Other Contract",
        sections=(
            ("parties", "Parties"),
            ("terms", "Terms and Conditions"),
            ("general", "General Provisions"),
            ("signatures", "Signatures"),
        ),
        requires_total=False,
    ),
}

_missing = set(ContractType) - set(CONTRACT_TEMPLATES)
if _missing:
    raise RuntimeError(f"Contract templates missing for: {sorted(t.value for t in _missing)}")


def template_for(contract_type: ContractType | str) -> ContractTemplate:
    return CONTRACT_TEMPLATES[ContractType(contract_type)]
