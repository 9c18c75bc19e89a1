"""
Promo Video Workflow

Server-side orchestration for the "Create promo video" wizard:
  Scenes   — PhotoRoom cut-out → background → composite / merge → render
  Audio    — script + ElevenLabs voice-over, background music
  Finalize — merge scenes, voice-over and music into the final Short
  Shorts   — persistence with save / restore, reset and regeneration
"""

from .orchestrator import PromoWorkflowService
from .routes import shorts_router, workflow_router
from .models import WorkflowStep, ShortStatus, SceneStatus

__all__ = [
    "PromoWorkflowService",
    "shorts_router",
    "workflow_router",
    "WorkflowStep",
    "ShortStatus",
    "SceneStatus",
]
