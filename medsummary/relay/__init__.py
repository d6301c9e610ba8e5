"""
Summary relay boundary for the medsummary service.

Design intent:
- Turn a fallible upstream summary stream into a client stream that always terminates.
- Keep translation pure and fallback-agnostic.
- Substitute a local fallback at most once per request.
"""
