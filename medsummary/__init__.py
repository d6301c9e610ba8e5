"""
medsummary backend package.

Design intent:
- Relay streamed medical summaries for recorded visits to clients as server-sent events.
- Keep the relay (translate + fallback) independent from HTTP and storage details.
"""
