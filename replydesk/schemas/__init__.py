"""
schemas/ — Pydantic models for ReplyDesk

Collaborator payloads (mail, calendar, classification, slots) validated at
the boundary, plus request/response models for the operator API.
"""
