from __future__ import annotations
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class LandmarkIn(BaseModel):
    x: float
    y: float
    confidence: float = Field(1.0, ge=0.0, le=1.0, description="Landmark confidence / visibility")


class PoseMessage(BaseModel):
    type: Literal["pose"] = "pose"
    landmarks: Dict[str, Optional[LandmarkIn]] = Field(default_factory=dict, description="Joint name → landmark")


class StartRequest(BaseModel):
    preset: str = Field("standard", description="Tuning preset name")
    min_confidence: Optional[float] = Field(None, description="Override landmark confidence gate")
    down_threshold: Optional[float] = Field(None, description="Override DOWN angle (deg)")
    up_threshold: Optional[float] = Field(None, description="Override UP angle (deg)")
    min_stable_frames: Optional[int] = Field(None, description="Override debounce window (frames)")
    min_torso_straightness: Optional[float] = Field(None, description="Enable/override torso gate (deg)")

    def overrides(self) -> dict:
        return self.model_dump(exclude={"preset"}, exclude_none=True)


class StartResponse(BaseModel):
    session_id: str
    status: str


class StatusResponse(BaseModel):
    session_id: Optional[str] = None
    state: str
    count: int
    phase: str
    feedback: str
    preset: Optional[str] = None


class FrameResponse(BaseModel):
    type: Literal["frame"] = "frame"
    count: int
    phase: str
    feedback: str
