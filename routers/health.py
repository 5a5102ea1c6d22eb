"""
Liveness endpoint.
"""

import logging

from fastapi import APIRouter

from schemas import envelope

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    logging.debug("Health check endpoint hit")
    return envelope(True, "Manim Orchestrator API is running", {"status": "ok"})
