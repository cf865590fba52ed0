"""
schemas/classification.py — Fixed result shapes for the AI collaborator

Business Rules:
- confidence is clamped to 0.0-1.0 by validation, not trusted
- A classification only warrants a draft when it is a demo request at or
  above the confidence threshold and carries a reply body and contact
- Slots arrive already resolved by the slot finder

Called by: services/classifier.py, services/intake.py, services/reply_resolver.py
Depends on: pydantic, schemas/slots.py
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from .slots import TimeSlot


class ContactInfo(BaseModel):
    name: str = ""
    email: str
    company: str | None = None


class ClassificationResult(BaseModel):
    is_demo_request: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    contact: ContactInfo | None = None
    response_subject: str | None = None
    response_body: str | None = None
    proposed_slots: list[TimeSlot] = Field(default_factory=list)

    def is_actionable(self, threshold: float) -> bool:
        return self.is_demo_request and self.confidence >= threshold


class ReplyDecision(BaseModel):
    should_create_event: bool = False
    selected_slot: TimeSlot | None = None
    reason: str = ""
