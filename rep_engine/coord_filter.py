"""
메트릭 시간 스무딩 필터

고정 α 대신 시간 상수 τ를 쓰는 EMA: α = 1 − exp(−dt/τ)
프레임 간격이 들쭉날쭉해도 같은 물리 시간 기준으로 스무딩된다.
"""
import math
from typing import Dict, Optional, Tuple

from rep_engine.exercise_config import Metric

FIRST_FRAME_DT = 0.033   # 첫 프레임 dt (초, ≈30fps)
MIN_DT = 0.001

TAU_FAST = 0.10          # 각도: 반복 경계에 민감해야 함
TAU_SLOW = 0.18          # 비율(flare, asym 등): 노이즈가 큼
TAU_DETECTOR_ANGLE = 0.08
TAU_DETECTOR_VELOCITY = 0.12

FAST_METRICS = frozenset({
    Metric.ELBOW_FLEXION,
    Metric.BACK_ANGLE,
    Metric.ELBOW_FLARE,
    Metric.KNEE_ANGLE,
})

# visibility 플래그는 스무딩하지 않는다 (0/1 그대로)
PASS_THROUGH_METRICS = frozenset({
    Metric.HIPS_VISIBLE,
    Metric.ARMS_VISIBLE,
    Metric.BODY_VISIBLE,
    Metric.TEMPO_FAST,
})


def ema_filter(previous: Optional[float], value: float, dt: float, tau: float) -> float:
    """이전 값이 없으면 value를 그대로 반환한다."""
    if previous is None:
        return value
    alpha = 1.0 - math.exp(-dt / tau)
    return alpha * value + (1.0 - alpha) * previous


def frame_dt(last_ms: Optional[int], timestamp_ms: int) -> float:
    """이전 타임스탬프 대비 경과 시간(초). 첫 프레임은 FIRST_FRAME_DT."""
    if last_ms is None:
        return FIRST_FRAME_DT
    return max(MIN_DT, (timestamp_ms - last_ms) / 1000.0)


class MetricSmoother:
    """메트릭별 독립 EMA 스무더."""

    def __init__(self, tau_fast: float = TAU_FAST, tau_slow: float = TAU_SLOW):
        self.tau_fast = tau_fast
        self.tau_slow = tau_slow
        self._values: Dict[Metric, float] = {}
        self._last_ms: Optional[int] = None

    def reset(self):
        self._values.clear()
        self._last_ms = None

    def tau_for(self, metric: Metric) -> Optional[float]:
        if metric in PASS_THROUGH_METRICS:
            return None
        return self.tau_fast if metric in FAST_METRICS else self.tau_slow

    def smooth(self, metrics: Dict[Metric, float], timestamp_ms: int) -> Dict[Metric, float]:
        """
        Args:
            metrics: 원본 메트릭 스냅샷
            timestamp_ms: 프레임 타임스탬프

        Returns:
            동일 키의 스무딩된 스냅샷
        """
        dt = frame_dt(self._last_ms, timestamp_ms)
        self._last_ms = timestamp_ms

        smoothed = {}
        for metric, value in metrics.items():
            tau = self.tau_for(metric)
            if tau is None:
                smoothed[metric] = value
                continue
            # 비유한 값은 버리고 이전 상태 유지
            if not math.isfinite(value):
                smoothed[metric] = self._values.get(metric, value)
                continue
            smoothed[metric] = ema_filter(self._values.get(metric), value, dt, tau)
            self._values[metric] = smoothed[metric]
        return smoothed


class AngleVelocityTracker:
    """주 각도 스무딩 + 각속도(°/s) 추정. 반복 감지기 전용."""

    def __init__(self, tau_angle: float = TAU_DETECTOR_ANGLE,
                 tau_velocity: float = TAU_DETECTOR_VELOCITY):
        self.tau_angle = tau_angle
        self.tau_velocity = tau_velocity
        self.reset()

    def reset(self):
        self.angle: Optional[float] = None
        self.velocity: Optional[float] = None
        self._last_ms: Optional[int] = None

    def update(self, raw_angle: float, timestamp_ms: int) -> Tuple[Optional[float], Optional[float]]:
        """
        (스무딩 각도, 스무딩 속도)를 반환한다. 첫 프레임 속도는 0.
        raw_angle이 NaN/inf이면 상태를 갱신하지 않고 이전 값을 돌려준다 (첫 프레임이면 None).
        """
        if not math.isfinite(raw_angle):
            return self.angle, self.velocity

        dt = frame_dt(self._last_ms, timestamp_ms)
        self._last_ms = timestamp_ms

        prev_angle = self.angle
        self.angle = ema_filter(prev_angle, raw_angle, dt, self.tau_angle)
        raw_velocity = 0.0 if prev_angle is None else (self.angle - prev_angle) / dt
        self.velocity = ema_filter(self.velocity, raw_velocity, dt, self.tau_velocity)
        return self.angle, self.velocity
