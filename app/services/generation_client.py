# app/services/generation_client.py
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from app.core.config import get_settings
from app.core.contract_templates import template_for
from app.models.enums import ContractType

logger = logging.getLogger(__name__)

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


class GenerationUnavailable(Exception):
    pass


@dataclass(frozen=True)
class GenerationRequest:
    contract_type: ContractType
    opportunity_name: Optional[str] = None
    opportunity_description: Optional[str] = None
    account_name: Optional[str] = None
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    total_value: Optional[Decimal] = None
    custom_instructions: Optional[str] = None


def build_prompt(req: GenerationRequest) -> str:
    tpl = template_for(req.contract_type)
    lines = [
        f"You are a legal contract expert. Generate a professional {tpl.display_name} for:",
        "",
        f"PROJECT: {req.opportunity_name or '[Project Name]'}",
        f"DESCRIPTION: {req.opportunity_description or 'To be detailed in scope section'}",
        "",
        "PARTIES:",
        f"- Provider: {req.company_name or 'Consultant'}",
        f"  Address: {req.company_address or '[Provider Address]'}",
        f"- Client: {req.account_name or '[Client Name]'}",
        "",
    ]
    if req.total_value is not None:
        lines += [f"CONTRACT VALUE: {req.total_value:,.2f}", ""]
    if req.custom_instructions:
        lines += ["ADDITIONAL INSTRUCTIONS:", req.custom_instructions, ""]

    lines.append("Generate professional legal content for each section:")
    lines += [f"- {sid}: {title}" for sid, title in tpl.sections]
    lines += [
        "",
        "Return a JSON array:",
        '[{"id": "section_id", "title": "Section Title", "content": "Professional legal content in markdown format"}]',
        "",
        "Guidelines:",
        "- Use clear, professional legal language",
        "- Use [PLACEHOLDER] for information that needs to be filled in",
        "- For the signatures section, include signature blocks for both parties",
    ]
    return "\n".join(lines)


def parse_sections(content: str, contract_type: ContractType) -> List[Dict[str, str]]:
    """
    Extracts the section array from the model output.
    Unparseable output falls back to the template outline with a manual-entry note.
    """
    match = _JSON_ARRAY.search(content or "")
    if match:
        try:
            data = json.loads(match.group(0))
            sections = [
                {"id": str(s.get("id") or ""), "title": str(s.get("title") or ""), "content": str(s.get("content") or "")}
                for s in data
                if isinstance(s, dict)
            ]
            if sections:
                return sections
        except (ValueError, TypeError):
            pass

    logger.warning("generation_output_unparseable", extra={"contract_type": ContractType(contract_type).value})
    return [
        {"id": sid, "title": title, "content": f"[AI generation failed - please add {title} content manually]"}
        for sid, title in template_for(contract_type).sections
    ]


class GenerationClient:
    """
    OpenAI-style chat completion call to the document generation service.
    Runs under generation_timeout_seconds; every transport or payload failure
    becomes GenerationUnavailable.
    """

    def generate_sections(self, req: GenerationRequest) -> List[Dict[str, str]]:
        settings = get_settings()
        if not settings.generation_endpoint:
            raise GenerationUnavailable("Document generation service is not configured.")

        headers = {"Content-Type": "application/json"}
        if settings.generation_api_key:
            headers["Authorization"] = f"Bearer {settings.generation_api_key}"

        payload: Dict[str, Any] = {
            "model": settings.generation_model,
            "messages": [{"role": "user", "content": build_prompt(req)}],
            "max_tokens": settings.generation_max_tokens,
            "temperature": settings.generation_temperature,
        }

        started = time.monotonic()
        try:
            response = requests.post(
                settings.generation_endpoint,
                headers=headers,
                json=payload,
                timeout=settings.generation_timeout_seconds,
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except requests.exceptions.Timeout:
            logger.warning("generation_timeout", extra={"timeout_seconds": settings.generation_timeout_seconds})
            raise GenerationUnavailable("Document generation timed out.")
        except requests.exceptions.RequestException as e:
            logger.warning("generation_request_failed", extra={"error": str(e)})
            raise GenerationUnavailable("Document generation service request failed.")
        except (ValueError, KeyError, IndexError, TypeError):
            raise GenerationUnavailable("Document generation service returned an invalid response.")

        logger.info(
            "generation_completed",
            extra={
                "contract_type": ContractType(req.contract_type).value,
                "elapsed_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return parse_sections(content, req.contract_type)
