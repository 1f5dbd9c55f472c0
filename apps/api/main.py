from __future__ import annotations

from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from apps.api.analysis import (
    FRAME_INTERVAL_MS,
    SessionStore,
    analyze_landmark_sequence,
    build_settings,
)
from utils.keypoints import NUM_LANDMARKS, PoseFrame

app = FastAPI(
    title="RepCoach API",
    version="0.1.0",
    description="Rep counting and form feedback over per-frame pose landmarks.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = SessionStore()


class LandmarkIn(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None


class FrameIn(BaseModel):
    timestamp_ms: int = Field(ge=0)
    landmarks: List[LandmarkIn] = Field(min_length=NUM_LANDMARKS)

    def to_pose_frame(self) -> PoseFrame:
        return PoseFrame.from_dicts([lm.model_dump() for lm in self.landmarks], self.timestamp_ms)


class SessionCreateRequest(BaseModel):
    exercise: str
    target_reps: int = Field(default=10, ge=1)
    sensitivity: str = "normal"
    focus: str = "armsOnly"
    portrait: bool = True
    debug: bool = False


class AnalysisRequest(SessionCreateRequest):
    frames: List[FrameIn]
    frame_interval_ms: int = Field(default=FRAME_INTERVAL_MS, ge=0)


def _settings_from(payload: SessionCreateRequest):
    try:
        return build_settings(
            exercise=payload.exercise,
            target_reps=payload.target_reps,
            sensitivity=payload.sensitivity,
            focus=payload.focus,
            portrait=payload.portrait,
            debug=payload.debug,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _not_found(session_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"세션을 찾을 수 없습니다: {session_id}")


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "sessions": len(store)}


@app.post("/sessions")
def create_session(payload: SessionCreateRequest) -> dict:
    settings = _settings_from(payload)
    session_id = store.create(settings)
    return {"session_id": session_id, "exercise": settings.exercise.value}


@app.post("/sessions/{session_id}/frames")
def push_frame(session_id: str, payload: FrameIn) -> dict:
    try:
        frame = payload.to_pose_frame()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    try:
        output = store.process(session_id, frame)
    except KeyError:
        raise _not_found(session_id) from None
    return output.to_dict()


@app.post("/sessions/{session_id}/reset")
def reset_session(session_id: str) -> dict:
    try:
        store.reset(session_id)
    except KeyError:
        raise _not_found(session_id) from None
    return {"session_id": session_id, "reset": True}


@app.get("/sessions/{session_id}/summary")
def session_summary(session_id: str) -> dict:
    try:
        return store.summary(session_id)
    except KeyError:
        raise _not_found(session_id) from None


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str) -> dict:
    try:
        store.delete(session_id)
    except KeyError:
        raise _not_found(session_id) from None
    return {"session_id": session_id, "deleted": True}


@app.post("/analysis")
def analyze_sequence(payload: AnalysisRequest) -> dict:
    settings = _settings_from(payload)
    try:
        frames = [f.to_pose_frame() for f in payload.frames]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {
        "analysis_results": analyze_landmark_sequence(frames, settings, payload.frame_interval_ms),
    }
