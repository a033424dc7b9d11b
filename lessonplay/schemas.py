"""Pydantic shapes of the JSON the script model is asked to return."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ScenePayload(BaseModel):
    scene_number: int = Field(..., ge=1)
    narration: str = Field(..., min_length=1, description="What the narrator says")
    visual_description: str = Field(..., min_length=1, description="Image prompt for this scene")


class ScriptPayload(BaseModel):
    """Produced by the script model, consumed by scriptgen.parse_script."""
    title: str = Field(..., min_length=1)
    scenes: List[ScenePayload] = Field(..., min_length=1)
