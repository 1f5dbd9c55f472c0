from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Sequence

from rep_engine import (
    ExerciseEngine,
    ExerciseKind,
    FeedbackFocus,
    Sensitivity,
    SessionSettings,
)
from rep_engine.exercise_engine import EngineOutput
from utils.keypoints import PoseFrame

logger = logging.getLogger(__name__)


# --------------------
# constants
# --------------------
FRAME_INTERVAL_MS = 100  # 오프라인 분석 시 최소 프레임 간격


# --------------------
# canonicalize
# --------------------
def _normalize(value: str) -> str:
    return (value or "").strip().lower().replace("-", "").replace("_", "").replace(" ", "")


def canonicalize_sensitivity(value: Optional[str]) -> Sensitivity:
    if not value:
        return Sensitivity.NORMAL
    mapping = {s.value: s for s in Sensitivity}
    normalized = _normalize(value)
    if normalized not in mapping:
        raise ValueError(f"sensitivity는 {sorted(mapping)} 중 하나여야 합니다: {value!r}")
    return mapping[normalized]


def canonicalize_focus(value: Optional[str]) -> FeedbackFocus:
    if not value:
        return FeedbackFocus.ARMS_ONLY
    mapping = {_normalize(f.value): f for f in FeedbackFocus}
    normalized = _normalize(value)
    if normalized not in mapping:
        raise ValueError(f"focus는 armsOnly 또는 fullBody여야 합니다: {value!r}")
    return mapping[normalized]


def build_settings(
    exercise: str,
    target_reps: int = 10,
    sensitivity: Optional[str] = None,
    focus: Optional[str] = None,
    portrait: bool = True,
    debug: bool = False,
) -> SessionSettings:
    """요청 문자열 옵션 → SessionSettings. 잘못된 값은 ValueError."""
    if target_reps < 1:
        raise ValueError("target_reps는 1 이상이어야 합니다.")
    return SessionSettings(
        exercise=ExerciseKind.parse(exercise),
        target_reps=target_reps,
        sensitivity=canonicalize_sensitivity(sensitivity),
        focus=canonicalize_focus(focus),
        portrait=portrait,
        debug=debug,
    )


def frames_from_payload(items: Iterable[dict]) -> List[PoseFrame]:
    """[{"timestamp_ms": .., "landmarks": [{x, y, z, visibility}, ...]}, ...] → PoseFrame 리스트"""
    frames = []
    for i, item in enumerate(items):
        try:
            frames.append(PoseFrame.from_dicts(item["landmarks"], item["timestamp_ms"]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"frame {i}: timestamp_ms / landmarks 필드가 필요합니다 ({e})") from e
    return frames


# --------------------
# live sessions
# --------------------
class SessionStore:
    """세션 ID → ExerciseEngine. 세션별 락으로 프레임을 요청 순서대로 처리한다."""

    def __init__(self):
        self._lock = threading.Lock()
        self._engines: Dict[str, ExerciseEngine] = {}
        self._session_locks: Dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        return len(self._engines)

    def create(self, settings: SessionSettings) -> str:
        session_id = uuid.uuid4().hex
        engine = ExerciseEngine(settings)
        with self._lock:
            self._engines[session_id] = engine
            self._session_locks[session_id] = threading.Lock()
        logger.info(f"세션 생성 {session_id} ({settings.exercise.value}, 목표 {settings.target_reps}회)")
        return session_id

    def _get(self, session_id: str):
        with self._lock:
            if session_id not in self._engines:
                raise KeyError(session_id)
            return self._engines[session_id], self._session_locks[session_id]

    def process(self, session_id: str, frame: PoseFrame) -> EngineOutput:
        engine, lock = self._get(session_id)
        with lock:
            return engine.process_frame(frame)

    def reset(self, session_id: str) -> None:
        engine, lock = self._get(session_id)
        with lock:
            engine.reset()

    def summary(self, session_id: str) -> dict:
        engine, lock = self._get(session_id)
        with lock:
            session = engine.state.session
            return {
                "exercise": engine.kind.value,
                "repCount": session.rep_count,
                "targetReps": session.target_reps,
                "overallScorePercent": session.overall_score,
                "repScores": list(session.rep_scores),
                "isSessionComplete": session.is_complete,
                "sessionSummary": session.summary.to_dict() if session.summary else None,
            }

    def delete(self, session_id: str) -> None:
        with self._lock:
            if session_id not in self._engines:
                raise KeyError(session_id)
            del self._engines[session_id]
            del self._session_locks[session_id]
        logger.info(f"세션 삭제 {session_id}")


# --------------------
# offline analysis
# --------------------
def analyze_landmark_sequence(
    frames: Sequence[PoseFrame],
    settings: SessionSettings,
    frame_interval_ms: int = FRAME_INTERVAL_MS,
) -> dict:
    """
    기록된 landmark 시퀀스 전체를 엔진에 통과시킨다.

    Args:
        frames: 타임스탬프 오름차순 PoseFrame
        settings: 세션 설정
        frame_interval_ms: 이 간격보다 촘촘한 프레임은 건너뛴다

    Returns:
        최종 출력, 반복별 기록, 최고/최저 반복 인덱스를 담은 dict
    """
    engine = ExerciseEngine(settings)
    output: Optional[EngineOutput] = None
    last_processed_ms: Optional[int] = None
    processed = 0

    reps: List[dict] = []
    best_idx: Optional[int] = None
    worst_idx: Optional[int] = None

    for frame in frames:
        ts = frame.timestamp_ms
        if last_processed_ms is not None and ts - last_processed_ms < frame_interval_ms:
            continue
        last_processed_ms = ts
        processed += 1

        output = engine.process_frame(frame)
        if output.spoken_message is None:
            continue

        score = output.last_rep_score_percent
        reps.append({
            "rep": output.rep_count,
            "timestamp_ms": ts,
            "score": score,
            "message": output.primary_feedback_message,
            "issues": list(output.last_rep_issues),
            "values": {m.value: round(v, 4) for m, v in engine.state.rep_values.items()},
        })
        idx = len(reps) - 1
        if best_idx is None or score >= reps[best_idx]["score"]:
            best_idx = idx
        if worst_idx is None or score <= reps[worst_idx]["score"]:
            worst_idx = idx

    logger.info(f"오프라인 분석 완료: {processed}/{len(frames)} 프레임, {len(reps)}회")
    return {
        "exercise": settings.exercise.value,
        "total_frames": len(frames),
        "processed_frames": processed,
        "result": output.to_dict() if output is not None else None,
        "reps": reps,
        "best_rep_index": best_idx,
        "worst_rep_index": worst_idx,
    }
