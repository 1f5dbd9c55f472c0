"""
운동 엔진: 프레임 한 장씩 받아 반복 수 / 점수 / 피드백을 산출한다.

landmarks → 메트릭 계산 → 뷰 분류(+유예 래치) → 스무딩 → 반복 감지
→ (반복 완료 시) 규칙 평가 · 세션 집계 · 캘리브레이션 → 프레임별 조언 메시지

모든 가변 상태는 EngineState 하나에 모여 있고 reset()은 새 EngineState로 교체한다.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from rep_engine.angle_utils import compute_metrics, depth_progress
from rep_engine.calibration import CalibrationTracker, Sensitivity
from rep_engine.coord_filter import MetricSmoother
from rep_engine.exercise_config import ExerciseConfig, ExerciseKind, Metric, load_exercise_config
from rep_engine.feedback_rules import (
    FeedbackFocus,
    FeedbackResult,
    FeedbackRuleEngine,
    RiskLevel,
    RuleContext,
)
from rep_engine.phase_detector import RepDetector, RepEvent, RepRecord, create_rep_detector
from rep_engine.posture_classifier import PostureLatch, PostureMode, classify_posture
from rep_engine.session import SessionAggregator, SessionSummary
from utils.keypoints import VISIBILITY_THRESHOLD, PoseFrame

logger = logging.getLogger(__name__)

FEEDBACK_REPEAT_MS = 800
DEPTH_HINT_THRESHOLD = 0.7

POSITION_MESSAGES = {
    ExerciseKind.PUSHUP: "Get into push-up position",
    ExerciseKind.SQUAT: "Get into squat position",
    ExerciseKind.PULLUP: "Get into pull-up position",
}

HIP_METRICS = (Metric.HIP_DROP_RATIO, Metric.HIP_RISE_RATIO, Metric.HIP_ASYM)

# 반복 단위로만 의미가 있는 메트릭 (프레임별 조언에서는 제외)
REP_ONLY_METRICS = (Metric.DEPTH_PROGRESS, Metric.TEMPO_FAST)


@dataclass(frozen=True)
class SessionSettings:
    exercise: ExerciseKind = ExerciseKind.PUSHUP
    target_reps: int = 10
    sensitivity: Sensitivity = Sensitivity.NORMAL
    focus: FeedbackFocus = FeedbackFocus.ARMS_ONLY
    portrait: bool = True
    debug: bool = False


@dataclass
class EngineState:
    """세션 하나의 가변 상태 전체."""
    latch: PostureLatch
    smoother: MetricSmoother
    detector: RepDetector
    calibration: CalibrationTracker
    session: SessionAggregator
    view: PostureMode = PostureMode.NONE
    depth_progress: float = 0.0
    message: str = ""
    secondary: str = ""
    risk: RiskLevel = RiskLevel.LOW
    last_rep_issues: Tuple[str, ...] = ()
    last_feedback_message: str = ""
    last_feedback_ms: int = 0
    debug_text: str = ""
    rep_values: Dict[Metric, float] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineOutput:
    rep_count: int
    clean_rep_count: int
    overall_score_percent: int
    depth_progress: float
    current_risk_category: RiskLevel
    primary_feedback_message: str
    secondary_feedback_hint: str
    last_rep_score_percent: int
    is_session_complete: bool
    posture_mode: PostureMode
    session_summary: Optional[SessionSummary] = None
    debug_text: str = ""
    spoken_message: Optional[str] = None
    last_rep_issues: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "repCount": self.rep_count,
            "cleanRepCount": self.clean_rep_count,
            "overallScorePercent": self.overall_score_percent,
            "depthProgress": round(self.depth_progress, 4),
            "currentRiskCategory": self.current_risk_category.value,
            "primaryFeedbackMessage": self.primary_feedback_message,
            "secondaryFeedbackHint": self.secondary_feedback_hint,
            "lastRepScorePercent": self.last_rep_score_percent,
            "isSessionComplete": self.is_session_complete,
            "sessionSummary": self.session_summary.to_dict() if self.session_summary else None,
            "debugText": self.debug_text or None,
            "spokenMessage": self.spoken_message,
            "postureMode": self.posture_mode.value,
            "lastRepIssues": list(self.last_rep_issues),
        }


class ExerciseEngine:
    """
    세션당 하나의 엔진 인스턴스.

    사용 예:
        engine = ExerciseEngine(SessionSettings(exercise=ExerciseKind.SQUAT, target_reps=5))
        for frame in frames:
            out = engine.process_frame(frame)
    """

    def __init__(self, settings: Optional[SessionSettings] = None,
                 config: Optional[ExerciseConfig] = None,
                 visibility_threshold: float = VISIBILITY_THRESHOLD):
        self.settings = settings or SessionSettings()
        self.config = config or load_exercise_config(self.settings.exercise)
        self.visibility_threshold = visibility_threshold
        self.kind = self.settings.exercise
        self.primary_metric = self.kind.primary_metric
        self.rules = FeedbackRuleEngine(self.config.feedback_rules, self.settings.sensitivity)
        self.state = self._new_state()

    def _new_state(self) -> EngineState:
        return EngineState(
            latch=PostureLatch(),
            smoother=MetricSmoother(),
            detector=create_rep_detector(self.config),
            calibration=CalibrationTracker(self.primary_metric, self.config.calibration_reps),
            session=SessionAggregator(self.settings.target_reps),
            message=POSITION_MESSAGES[self.kind],
        )

    def reset(self):
        """세션 상태 전체를 새로 만든 것과 동일하게 초기화한다."""
        self.state = self._new_state()
        logger.info(f"엔진 리셋 ({self.kind.value}, 목표 {self.settings.target_reps}회)")

    @property
    def rep_count(self) -> int:
        return self.state.session.rep_count

    # ─── 프레임 처리 ─────────────────────────────────────

    def process_frame(self, frame: PoseFrame) -> EngineOutput:
        st = self.state
        if st.session.is_complete:
            return self._output()

        ts = frame.timestamp_ms
        raw = compute_metrics(self.kind, frame, self.visibility_threshold)
        smoothed = st.smoother.smooth(raw, ts)

        raw_view = classify_posture(self.kind, frame, self.visibility_threshold)
        st.view = st.latch.update(raw_view, ts)

        if st.view is PostureMode.NONE:
            st.detector.reset()
            st.message = POSITION_MESSAGES[self.kind]
            st.secondary = ""
            st.risk = RiskLevel.LOW
            st.depth_progress = 0.0
            st.debug_text = "mode=none" if self.settings.debug else ""
            return self._output()

        if raw_view is PostureMode.NONE:
            # 유예 시간 내: 감지 보류, 상태 유지
            return self._output()

        view = st.view.value
        spoken = None
        event = st.detector.update(raw[self.primary_metric], ts, view, smoothed)
        if event is RepEvent.COMPLETED:
            spoken = self._finalize_rep(st.detector.last_record, view, ts)

        progress = self._depth_progress(smoothed[self.primary_metric], view)
        if math.isfinite(progress):
            st.depth_progress = progress

        if spoken is None:
            self._apply_frame_feedback(smoothed, view, ts)

        calib = st.calibration
        if not calib.is_complete and not st.secondary:
            st.secondary = f"Calibrating: {calib.reps_observed}/{calib.target_reps}"

        st.debug_text = self._debug_text(smoothed, view) if self.settings.debug else ""
        return self._output(spoken)

    # ─── 내부 로직 ───────────────────────────────────────

    def _context(self, view: str) -> RuleContext:
        return RuleContext(
            view=view,
            exercise=self.kind,
            portrait=self.settings.portrait,
            focus=self.settings.focus,
        )

    def _use_hip_metrics(self, hips_visible: bool) -> bool:
        return hips_visible and self.settings.focus is FeedbackFocus.FULL_BODY and not self.settings.portrait

    def _gate_hip_metrics(self, values: Dict[Metric, float], hips_visible: bool):
        if self._use_hip_metrics(hips_visible):
            return
        for metric in HIP_METRICS:
            if metric in values:
                values[metric] = 0.0

    def _rep_values(self, record: RepRecord, view: str) -> Dict[Metric, float]:
        """완료된 반복의 평가용 스냅샷 (극값 + 깊이 진행률 + 템포)."""
        values = record.aggregate()
        self._gate_hip_metrics(values, record.minimum(Metric.HIPS_VISIBLE, 1.0) >= 0.5)

        th = self.config.thresholds_for(view)
        rep_min_angle = record.minimum(self.primary_metric, th.lockout_threshold)
        values[Metric.DEPTH_PROGRESS] = depth_progress(rep_min_angle, th.depth_threshold, th.lockout_threshold)
        values[Metric.TEMPO_FAST] = 1.0 if record.duration_sec < self.config.tempo_min_sec else 0.0
        return values

    def _finalize_rep(self, record: RepRecord, view: str, ts: int) -> str:
        st = self.state
        values = self._rep_values(record, view)
        context = self._context(view)
        baseline = st.calibration.baseline

        result: FeedbackResult = self.rules.evaluate(values, context, baseline)
        st.session.add_rep(result)
        st.calibration.observe(record, values)
        st.rep_values = values
        st.last_rep_issues = tuple(result.matched_ids)

        logger.debug(f"[Rep {st.session.rep_count}] {record.duration_sec:.2f}s "
                     f"matched={result.matched_ids} score={result.score}")
        if self.settings.debug and not result.matched:
            self.rules.explain(values, context, baseline)

        self._update_feedback(result.message, result.secondary, result.risk, ts, force=True)
        return f"Rep {st.session.rep_count}. {result.message}"

    def _depth_progress(self, angle: float, view: str) -> float:
        baseline = self.state.calibration.baseline
        if baseline is not None:
            return depth_progress(angle, baseline.primary_min, baseline.primary_max)
        th = self.config.thresholds_for(view)
        return depth_progress(angle, th.depth_threshold, th.lockout_threshold)

    def _apply_frame_feedback(self, smoothed: Dict[Metric, float], view: str, ts: int):
        """반복 사이/중간의 조언 메시지 (같은 메시지는 800 ms 내 반복 갱신하지 않음)."""
        st = self.state
        if not self.rules.rules:
            return

        values = {m: v for m, v in smoothed.items() if m not in REP_ONLY_METRICS}
        self._gate_hip_metrics(values, smoothed.get(Metric.HIPS_VISIBLE, 1.0) >= 0.5)
        result = self.rules.evaluate(values, self._context(view), st.calibration.baseline)

        if not result.matched:
            if st.detector.in_rep:
                hint = "Lower down for full depth" if st.depth_progress < DEPTH_HINT_THRESHOLD else "Hold steady"
                self._update_feedback(hint, "", RiskLevel.LOW, ts)
            return
        self._update_feedback(result.message, result.secondary, result.risk, ts)

    def _update_feedback(self, message: str, secondary: str, risk: RiskLevel, ts: int,
                         force: bool = False):
        st = self.state
        if (not force and message == st.last_feedback_message
                and ts - st.last_feedback_ms < FEEDBACK_REPEAT_MS):
            return
        st.message = message
        st.secondary = secondary
        st.risk = risk
        st.last_feedback_message = message
        st.last_feedback_ms = ts

    def _debug_text(self, smoothed: Dict[Metric, float], view: str) -> str:
        st = self.state
        baseline = st.calibration.baseline
        parts = [
            f"mode={view}",
            f"view={'portrait' if self.settings.portrait else 'landscape'}",
            f"state={st.detector.state}",
            f"angle={smoothed[self.primary_metric]:.1f}",
        ]
        if Metric.HIP_DROP_RATIO in smoothed:
            hip_base = baseline.get(Metric.HIP_DROP_RATIO) if baseline else None
            flare_base = baseline.get(Metric.ELBOW_FLARE_RATIO) if baseline else None
            if hip_base is None:
                hip_base = self.config.hip_base_default
            if flare_base is None:
                flare_base = self.config.flare_base_default
            parts += [
                f"hip={smoothed[Metric.HIP_DROP_RATIO]:.2f}({hip_base:.2f})",
                f"flare={smoothed[Metric.ELBOW_FLARE_RATIO]:.2f}({flare_base:.2f})",
                f"asymS={smoothed[Metric.SHOULDER_ASYM]:.2f}",
                f"asymH={smoothed[Metric.HIP_ASYM]:.2f}",
            ]
        if Metric.ELBOW_ANGLE_DIFF in smoothed:
            parts.append(f"diff={smoothed[Metric.ELBOW_ANGLE_DIFF]:.1f}")
        parts += [
            f"depth={st.depth_progress:.2f}",
            f"score={st.session.overall_score}",
            f"last={st.session.last_score}",
            f"calib={st.calibration.reps_observed}/{st.calibration.target_reps}",
        ]
        return " ".join(parts)

    def _output(self, spoken: Optional[str] = None) -> EngineOutput:
        st = self.state
        session = st.session
        return EngineOutput(
            rep_count=session.rep_count,
            clean_rep_count=session.clean_reps,
            overall_score_percent=session.overall_score,
            depth_progress=st.depth_progress,
            current_risk_category=st.risk,
            primary_feedback_message=st.message,
            secondary_feedback_hint=st.secondary,
            last_rep_score_percent=session.last_score,
            is_session_complete=session.is_complete,
            posture_mode=st.view,
            session_summary=session.summary,
            debug_text=st.debug_text,
            spoken_message=spoken,
            last_rep_issues=st.last_rep_issues,
        )
