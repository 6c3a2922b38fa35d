# app/core/snapshot.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.core.clock import as_utc, utcnow
from app.core.contract_templates import template_for
from app.core.hashing import payload_hash
from app.models.enums import ContractType

GENERATED_BY = ("AI", "TEMPLATE", "MANUAL")


@dataclass(frozen=True)
class ContractSection:
    id: str
    title: str
    content: str

    def to_json(self) -> Dict[str, str]:
        return {"id": self.id, "title": self.title, "content": self.content}


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    One immutable rendering of a contract's content.

    A contract never patches a section in place: edits build a new snapshot
    and replace the stored one wholesale (and only while the contract is DRAFT).
    """

    contract_type: ContractType
    section_list: Tuple[ContractSection, ...]
    generated_by: str = "MANUAL"
    generated_at: datetime = field(default_factory=utcnow)
    template_used: Optional[str] = None

    def __post_init__(self):
        if self.generated_by not in GENERATED_BY:
            raise ValueError(f"generated_by must be one of {GENERATED_BY}")

    # ─────────────────────────────────────────────
    # CONSTRUCTORS
    # ─────────────────────────────────────────────

    @classmethod
    def from_template(cls, contract_type: ContractType) -> "DocumentSnapshot":
        tpl = template_for(contract_type)
        return cls(
            contract_type=ContractType(contract_type),
            section_list=tuple(
                ContractSection(id=sid, title=title, content=f"[{title} content to be added]")
                for sid, title in tpl.sections
            ),
            generated_by="TEMPLATE",
            template_used=ContractType(contract_type).value,
        )

    @classmethod
    def from_sections(
        cls,
        contract_type: ContractType,
        sections: List[Dict[str, Any]],
        *,
        generated_by: str = "MANUAL",
    ) -> "DocumentSnapshot":
        return cls(
            contract_type=ContractType(contract_type),
            section_list=tuple(
                ContractSection(
                    id=str(s.get("id") or f"section_{i + 1}"),
                    title=str(s.get("title") or ""),
                    content=str(s.get("content") or ""),
                )
                for i, s in enumerate(sections)
            ),
            generated_by=generated_by,
        )

    @classmethod
    def from_json(cls, contract_type: ContractType, data: Optional[Dict[str, Any]]) -> "DocumentSnapshot":
        data = data or {}
        meta = data.get("metadata") or {}
        generated_at = meta.get("generatedAt")
        snap = cls.from_sections(
            contract_type,
            data.get("sections") or [],
            generated_by=meta.get("generatedBy") or "MANUAL",
        )
        return cls(
            contract_type=snap.contract_type,
            section_list=snap.section_list,
            generated_by=snap.generated_by,
            generated_at=as_utc(datetime.fromisoformat(generated_at)) if generated_at else snap.generated_at,
            template_used=meta.get("templateUsed"),
        )

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def sections(self) -> List[ContractSection]:
        return list(self.section_list)

    def is_empty(self) -> bool:
        return not any(s.content.strip() for s in self.section_list)

    def render(self) -> str:
        tpl = template_for(self.contract_type)
        lines = [
            f"# {tpl.display_name}",
            "",
            f"*Document generated on {self.generated_at.date().isoformat()}*",
            "",
            "---",
            "",
        ]
        for section in self.section_list:
            lines.append(f"## {section.title}")
            lines.append("")
            lines.append(section.content)
            lines.append("")
        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        return {
            "markdown": self.render(),
            "sections": [s.to_json() for s in self.section_list],
            "metadata": {
                "generatedAt": self.generated_at.isoformat(),
                "generatedBy": self.generated_by,
                "templateUsed": self.template_used,
            },
        }

    def content_hash(self) -> str:
        # Metadata is excluded: the hash identifies the wording, not when it was produced.
        return payload_hash({"sections": [s.to_json() for s in self.section_list]})
