"""Request observability: structlog setup, response capture and access lines.

Every API request produces exactly one plain-text access line once its
response has finished; everything else goes out as structured JSON events.
"""
