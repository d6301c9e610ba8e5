"""
API orchestration boundary for the medsummary backend.

Design intent:
- Expose thin, typed endpoints for transcript records and summary streams.
- Keep request validation explicit and failure modes predictable.
- Orchestrate the relay without embedding domain logic in routers.
"""
