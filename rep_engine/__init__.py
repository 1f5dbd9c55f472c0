"""
rep_engine 패키지: 규칙 기반 반복 카운트 / 자세 피드백 엔진

angle_utils:        각도/거리/비율 계산, 운동별 메트릭
posture_classifier: 촬영 방향(뷰) 분류 + 유예 래치
coord_filter:       시간 상수 EMA 스무딩, 각속도 추정
phase_detector:     반복 경계 감지 (임계값 / 선언형 FSM)
condition:          FSM 조건식 파서
calibration:        개인별 기준선 학습 및 임계값 조정
feedback_rules:     선언형 피드백 규칙 평가
session:            세션 점수 집계
exercise_engine:    프레임 단위 오케스트레이션
"""
from rep_engine.angle_utils import (
    angle_at,
    cal_distance,
    compute_metrics,
    depth_progress,
    safe_ratio,
)
from rep_engine.calibration import (
    CalibrationBaseline,
    CalibrationTracker,
    Sensitivity,
    effective_threshold,
)
from rep_engine.condition import ConditionError, compile_fsm, parse_condition
from rep_engine.coord_filter import AngleVelocityTracker, MetricSmoother, ema_filter
from rep_engine.exercise_config import (
    ExerciseConfig,
    ExerciseKind,
    FeedbackRule,
    Metric,
    Severity,
    load_exercise_config,
)
from rep_engine.exercise_engine import EngineOutput, ExerciseEngine, SessionSettings
from rep_engine.feedback_rules import FeedbackFocus, FeedbackRuleEngine, RiskLevel, RuleContext
from rep_engine.phase_detector import (
    DeclarativeRepDetector,
    RepEvent,
    RepRecord,
    ThresholdRepDetector,
    create_rep_detector,
)
from rep_engine.posture_classifier import PostureLatch, PostureMode, classify_posture
from rep_engine.session import SessionAggregator, SessionSummary

__all__ = [
    'angle_at',
    'cal_distance',
    'compute_metrics',
    'depth_progress',
    'safe_ratio',
    'CalibrationBaseline',
    'CalibrationTracker',
    'Sensitivity',
    'effective_threshold',
    'ConditionError',
    'compile_fsm',
    'parse_condition',
    'AngleVelocityTracker',
    'MetricSmoother',
    'ema_filter',
    'ExerciseConfig',
    'ExerciseKind',
    'FeedbackRule',
    'Metric',
    'Severity',
    'load_exercise_config',
    'EngineOutput',
    'ExerciseEngine',
    'SessionSettings',
    'FeedbackFocus',
    'FeedbackRuleEngine',
    'RiskLevel',
    'RuleContext',
    'DeclarativeRepDetector',
    'RepEvent',
    'RepRecord',
    'ThresholdRepDetector',
    'create_rep_detector',
    'PostureLatch',
    'PostureMode',
    'classify_posture',
    'SessionAggregator',
    'SessionSummary',
]
