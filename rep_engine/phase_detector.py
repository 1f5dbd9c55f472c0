"""
반복(rep) 경계 감지기

두 가지 전략이 같은 RepDetector 인터페이스를 공유한다.
- ThresholdRepDetector:   각도/속도/체류시간 임계값 기반 UP/DOWN (arming 포함)
- DeclarativeRepDetector: 설정 JSON의 FSM 조건식 기반 (FSM이 없는 뷰는 Threshold로 대체)

감지기는 원본 주 각도를 받아 자체적으로 스무딩·속도 추정을 하고,
반복 시작~종료 사이의 메트릭 극값을 RepRecord에 누적한다.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from rep_engine.condition import CompiledFSM, compile_fsm
from rep_engine.coord_filter import AngleVelocityTracker
from rep_engine.exercise_config import ExerciseConfig, Metric

logger = logging.getLogger(__name__)


class RepEvent(Enum):
    NONE = "none"
    STARTED = "started"
    COMPLETED = "completed"


# 작을수록 나쁜 메트릭 (나머지는 클수록 나쁨 → 최댓값 사용)
MIN_AGGREGATED = frozenset({
    Metric.BACK_ANGLE,
    Metric.HIPS_VISIBLE,
    Metric.ARMS_VISIBLE,
    Metric.BODY_VISIBLE,
})


@dataclass
class RepRecord:
    """한 반복 동안의 메트릭별 최솟값/최댓값."""
    start_ms: int
    end_ms: Optional[int] = None
    minimums: Dict[Metric, float] = field(default_factory=dict)
    maximums: Dict[Metric, float] = field(default_factory=dict)

    def update(self, snapshot: Dict[Metric, float]):
        for metric, value in snapshot.items():
            if not math.isfinite(value):
                continue
            self.minimums[metric] = min(self.minimums.get(metric, value), value)
            self.maximums[metric] = max(self.maximums.get(metric, value), value)

    def minimum(self, metric: Metric, default: float = 0.0) -> float:
        return self.minimums.get(metric, default)

    def maximum(self, metric: Metric, default: float = 0.0) -> float:
        return self.maximums.get(metric, default)

    @property
    def duration_sec(self) -> float:
        if self.end_ms is None:
            return 0.0
        return max(1, self.end_ms - self.start_ms) / 1000.0

    def aggregate(self) -> Dict[Metric, float]:
        """메트릭별 '나쁜 쪽' 극값 스냅샷."""
        return {
            metric: (self.minimums[metric] if metric in MIN_AGGREGATED else self.maximums[metric])
            for metric in self.maximums
        }


class RepDetector:
    """반복 감지기 부모 클래스"""

    def __init__(self, config: ExerciseConfig):
        self.config = config
        self.tracker = AngleVelocityTracker()
        self.record: Optional[RepRecord] = None
        self.last_record: Optional[RepRecord] = None

    @property
    def in_rep(self) -> bool:
        return self.record is not None

    @property
    def state(self) -> str:
        raise NotImplementedError

    @property
    def armed(self) -> bool:
        return True

    @property
    def angle(self) -> Optional[float]:
        return self.tracker.angle

    @property
    def velocity(self) -> Optional[float]:
        return self.tracker.velocity

    def _step(self, angle: float, velocity: float, timestamp_ms: int, view: str,
              snapshot: Dict[Metric, float]) -> RepEvent:
        raise NotImplementedError

    def update(self, raw_angle: float, timestamp_ms: int, view: str,
               snapshot: Dict[Metric, float]) -> RepEvent:
        """
        프레임 하나를 처리한다.

        Args:
            raw_angle: 스무딩 전 주 각도 (°)
            timestamp_ms: 프레임 타임스탬프
            view: "front" / "side"
            snapshot: 스무딩된 메트릭 (RepRecord 누적 + FSM 조건 평가용)

        Returns:
            RepEvent: COMPLETED면 last_record에 종료된 RepRecord가 들어있다
        """
        angle, velocity = self.tracker.update(raw_angle, timestamp_ms)
        if angle is None:
            return RepEvent.NONE
        event = self._step(angle, velocity, timestamp_ms, view, snapshot)

        if event is RepEvent.STARTED:
            self.record = RepRecord(start_ms=timestamp_ms)
        if self.record is not None:
            self.record.update(snapshot)
        if event is RepEvent.COMPLETED:
            record = self.record or RepRecord(start_ms=timestamp_ms)
            record.end_ms = timestamp_ms
            self.last_record = record
            self.record = None
        return event

    def reset(self):
        self.tracker.reset()
        self.record = None
        self.last_record = None


class ThresholdRepDetector(RepDetector):
    """
    UP(lockout) / DOWN(bottom) 2상태 감지기.

    - arming: UP에서 각도 > lockout 이 lockoutHoldMS 이상 유지되어야 무장
    - UP → DOWN: 각도 < depth, 속도 < minDown, dwell 유지, 무장 상태 → 반복 시작 (무장 해제)
    - DOWN → UP: 각도 > lockout, 속도 > minUp, dwell 유지 → 반복 완료
    """

    UP = "UP"
    DOWN = "DOWN"

    def __init__(self, config: ExerciseConfig):
        super().__init__(config)
        self._reset_state()
        logger.info(f"ThresholdRepDetector 초기화 ({config.exercise.value}, 뷰 {sorted(config.views)})")

    def _reset_state(self):
        self._state = self.UP
        self._armed = False
        self.lockout_hold_start_ms: Optional[int] = None
        self.below_depth_start_ms: Optional[int] = None
        self.above_lockout_start_ms: Optional[int] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def armed(self) -> bool:
        return self._armed

    def _step(self, angle, velocity, timestamp_ms, view, snapshot) -> RepEvent:
        th = self.config.thresholds_for(view)

        if self._state == self.UP:
            if angle > th.lockout_threshold:
                if self.lockout_hold_start_ms is None:
                    self.lockout_hold_start_ms = timestamp_ms
                if timestamp_ms - self.lockout_hold_start_ms >= self.config.lockout_hold_ms:
                    if not self._armed:
                        logger.debug(f"armed (angle={angle:.1f}°)")
                    self._armed = True
            else:
                self.lockout_hold_start_ms = None

            if angle < th.depth_threshold and velocity < th.min_down_velocity:
                if self.below_depth_start_ms is None:
                    self.below_depth_start_ms = timestamp_ms
                if timestamp_ms - self.below_depth_start_ms >= th.dwell_ms and self._armed:
                    self._state = self.DOWN
                    self._armed = False
                    self.lockout_hold_start_ms = None
                    self.above_lockout_start_ms = None
                    logger.debug(f"UP → DOWN [{view}] (angle={angle:.1f}°, vel={velocity:.1f}°/s)")
                    return RepEvent.STARTED
            else:
                self.below_depth_start_ms = None
            return RepEvent.NONE

        if angle > th.lockout_threshold and velocity > th.min_up_velocity:
            if self.above_lockout_start_ms is None:
                self.above_lockout_start_ms = timestamp_ms
            if timestamp_ms - self.above_lockout_start_ms >= th.dwell_ms:
                self._state = self.UP
                self.below_depth_start_ms = None
                logger.debug(f"DOWN → UP [{view}] (angle={angle:.1f}°, vel={velocity:.1f}°/s)")
                return RepEvent.COMPLETED
        else:
            self.above_lockout_start_ms = None
        return RepEvent.NONE

    def reset(self):
        super().reset()
        self._reset_state()


class DeclarativeRepDetector(RepDetector):
    """
    설정의 FSM(뷰별)으로 반복을 감지한다.

    - 매 프레임 state_order 순서로 처음 만족하는 상태가 현재 상태 (없으면 유지)
    - "start" 재진입 시 counted 해제
    - counter.from 진입 시 반복 시작
    - from → to 전이 + 경과 ≥ minRepDurationSec 이면 1회 완료
    """

    START_STATE = "start"

    def __init__(self, config: ExerciseConfig):
        super().__init__(config)
        self.fsms: Dict[str, CompiledFSM] = {
            view: compile_fsm(definition, view) for view, definition in config.fsm.items()
        }
        self.fallback = ThresholdRepDetector(config)
        self._reset_state()
        logger.info(f"DeclarativeRepDetector 초기화 ({config.exercise.value}, FSM 뷰 {sorted(self.fsms)})")

    def _reset_state(self):
        self.current_state: Optional[str] = None
        self.prev_state: Optional[str] = None
        self.fsm_rep_start_ms: Optional[int] = None
        self.counted = False

    @property
    def state(self) -> str:
        return self.current_state or self.fallback.state

    @property
    def armed(self) -> bool:
        return self.fallback.armed if self.current_state is None else True

    def _step(self, angle, velocity, timestamp_ms, view, snapshot) -> RepEvent:
        fsm = self.fsms.get(view)
        if fsm is None:
            return self.fallback._step(angle, velocity, timestamp_ms, view, snapshot)

        if self.current_state is None:
            self.current_state = fsm.initial_state
            self.prev_state = self.current_state

        values = dict(snapshot)
        values[Metric.ANGLE] = angle
        values[Metric.VELOCITY] = velocity

        next_state = fsm.match(values) or self.current_state
        if next_state != self.current_state:
            logger.debug(f"FSM[{view}] {self.current_state} → {next_state} (angle={angle:.1f}°)")
            self.prev_state = self.current_state
            self.current_state = next_state
            entered = True
        else:
            entered = False

        entered_start = entered and self.current_state == self.START_STATE
        if entered_start:
            self.counted = False

        event = RepEvent.NONE
        if entered and self.current_state == fsm.counter_from:
            self.fsm_rep_start_ms = timestamp_ms
            event = RepEvent.STARTED

        if self.prev_state == fsm.counter_from and self.current_state == fsm.counter_to and not self.counted:
            start_ms = self.fsm_rep_start_ms if self.fsm_rep_start_ms is not None else timestamp_ms
            if (timestamp_ms - start_ms) / 1000.0 >= fsm.min_rep_duration_sec:
                self.counted = True
                event = RepEvent.COMPLETED

        # start 복귀 시 미완료 반복은 버린다
        if entered_start and event is RepEvent.NONE:
            self.record = None
            self.fsm_rep_start_ms = None
        return event

    def reset(self):
        super().reset()
        self.fallback.reset()
        self._reset_state()


def create_rep_detector(config: ExerciseConfig) -> RepDetector:
    """설정에 FSM이 하나라도 있으면 선언형, 아니면 임계값 감지기."""
    if config.fsm:
        return DeclarativeRepDetector(config)
    return ThresholdRepDetector(config)
