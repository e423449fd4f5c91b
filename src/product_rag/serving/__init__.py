"""
Serving — FastAPI application exposing the processing orchestrator.

Authentication and ownership checks are expected in front of this app.
"""
