"""
routers/ — Operator API for ReplyDesk.

Thin APIRouters over services/ and the JobManager: scheduled-response
review and control, booked meetings, pipeline stats, job triggers.
Every /api route sits behind require_api_key.
"""
