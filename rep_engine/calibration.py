"""
개인별 캘리브레이션

처음 K회(기본 3회) 반복의 메트릭 극값을 기준선으로 기록하고, 이후 규칙 임계값을
max(정적 임계값, 기준선 × 심각도 배수) 로 조정한다.
K회가 끝나면 기준선은 고정되며 다시 바뀌지 않는다.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from rep_engine.exercise_config import FeedbackRule, Metric, Severity
from rep_engine.phase_detector import RepRecord

logger = logging.getLogger(__name__)

# 클수록 나쁜 메트릭: 반복별 최댓값의 최댓값을 기준선으로
SCALED_METRICS = (
    Metric.HIP_DROP_RATIO,
    Metric.ELBOW_FLARE_RATIO,
    Metric.SHOULDER_ASYM,
    Metric.ELBOW_ANGLE_DIFF,
    Metric.KNEE_VALGUS,
    Metric.FORWARD_LEAN,
)
DEPTH_MARGIN = 0.1


class Sensitivity(str, Enum):
    RELAXED = "relaxed"
    NORMAL = "normal"
    STRICT = "strict"

    @property
    def important_multiplier(self) -> float:
        return {"relaxed": 1.30, "normal": 1.20, "strict": 1.10}[self.value]

    @property
    def critical_multiplier(self) -> float:
        return {"relaxed": 1.50, "normal": 1.35, "strict": 1.20}[self.value]


def severity_multiplier(severity: Severity, sensitivity: Sensitivity) -> float:
    if severity is Severity.CRITICAL:
        return sensitivity.critical_multiplier
    if severity is Severity.IMPORTANT:
        return sensitivity.important_multiplier
    return 1.0


@dataclass(frozen=True)
class CalibrationBaseline:
    extrema: Dict[Metric, float]
    primary_min: float
    primary_max: float

    def get(self, metric: Metric) -> Optional[float]:
        return self.extrema.get(metric)


def effective_threshold(rule: FeedbackRule, baseline: Optional[CalibrationBaseline],
                        sensitivity: Sensitivity) -> float:
    """
    캘리브레이션을 반영한 규칙 임계값.

    - 기준선 없음 → 정적 임계값
    - SCALED_METRICS → max(정적, 기준선 × 배수)
    - depthProgress  → max(정적, 기준선 − 0.1)  (클수록 좋은 메트릭)
    """
    if baseline is None:
        return rule.threshold
    metric = rule.metric_id
    base = baseline.get(metric) if metric is not None else None
    if base is None:
        return rule.threshold
    if metric in SCALED_METRICS:
        return max(rule.threshold, base * severity_multiplier(rule.severity, sensitivity))
    if metric is Metric.DEPTH_PROGRESS:
        return max(rule.threshold, base - DEPTH_MARGIN)
    return rule.threshold


class CalibrationTracker:
    """처음 target_reps회 반복을 관찰하여 CalibrationBaseline을 만든다."""

    def __init__(self, primary_metric: Metric, target_reps: int = 3):
        self.primary_metric = primary_metric
        self.target_reps = target_reps
        self.reps_observed = 0
        self._extrema: Dict[Metric, float] = {}
        self._primary_min: Optional[float] = None
        self._primary_max: Optional[float] = None
        self.baseline: Optional[CalibrationBaseline] = None

    @property
    def is_complete(self) -> bool:
        return self.reps_observed >= self.target_reps

    def observe(self, record: RepRecord, rep_values: Dict[Metric, float]) -> Optional[CalibrationBaseline]:
        """
        완료된 반복 하나를 기록한다. 고정 이후 호출은 무시된다.

        Args:
            record: 종료된 RepRecord (주 각도 min/max)
            rep_values: 해당 반복의 평가용 스냅샷 (depthProgress 포함)
        """
        if self.is_complete:
            return self.baseline

        for metric in SCALED_METRICS + (Metric.DEPTH_PROGRESS,):
            if metric not in rep_values:
                continue
            value = rep_values[metric]
            self._extrema[metric] = max(self._extrema.get(metric, value), value)

        rep_min = record.minimum(self.primary_metric)
        rep_max = record.maximum(self.primary_metric)
        self._primary_min = rep_min if self._primary_min is None else min(self._primary_min, rep_min)
        self._primary_max = rep_max if self._primary_max is None else max(self._primary_max, rep_max)
        self.reps_observed += 1

        if self.is_complete:
            self.baseline = CalibrationBaseline(
                extrema=dict(self._extrema),
                primary_min=self._primary_min,
                primary_max=self._primary_max,
            )
            summary = " ".join(f"{m.value}={v:.3f}" for m, v in self.baseline.extrema.items())
            logger.info(f"[Calibration] 고정: {self.primary_metric.value} "
                        f"{self._primary_min:.1f}~{self._primary_max:.1f} {summary}")
        return self.baseline
