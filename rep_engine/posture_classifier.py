"""
프레임별 촬영 방향(뷰) 분류

푸시업: 측면(side) / 정면(front) / 자세 아님(none)
스쿼트·풀업: 필요한 관절이 보이면 front, 아니면 none (단일 뷰 분류)

PostureLatch는 마지막으로 분류된 뷰를 유예 시간(기본 800 ms) 동안 유지하여
한두 프레임의 잘못된 분류로 상태가 깜빡이지 않게 한다.
"""
import logging
from enum import Enum
from typing import NamedTuple, Optional

from rep_engine.angle_utils import cal_distance
from rep_engine.exercise_config import ExerciseKind
from utils.keypoints import VISIBILITY_THRESHOLD, Landmark, PoseFrame, visible_side

logger = logging.getLogger(__name__)


class PostureMode(str, Enum):
    NONE = "none"
    SIDE = "side"
    FRONT = "front"


class PostureJoints(NamedTuple):
    shoulder: Landmark
    wrist: Landmark
    hip: Landmark
    knee: Landmark
    ankle: Landmark


def joints_for(frame: PoseFrame, side: Optional[str] = None) -> PostureJoints:
    side = side or visible_side(frame, ("Shoulder", "Wrist", "Hip"))
    return PostureJoints(
        shoulder=frame.side(side, "Shoulder"),
        wrist=frame.side(side, "Wrist"),
        hip=frame.side(side, "Hip"),
        knee=frame.side(side, "Knee"),
        ankle=frame.side(side, "Ankle"),
    )


class PushUpViewClassifier:
    """
    푸시업 뷰 분류기.

    - 어깨/손목/엉덩이 중 하나라도 visibility < threshold → none
    - 어깨–엉덩이, 엉덩이–발목(무릎) 거리가 MIN_SEGMENT 미만 → none (퇴화 자세)
    - side:  몸통·다리가 수평에 가깝고 손목이 어깨 아래(수평 위치 비슷)
    - front: 손목·엉덩이·발목(무릎)이 어깨 아래로 수직 정렬
    - 둘 다 해당되면 none
    """

    MIN_SEGMENT = 0.05          # 정규화 좌표
    HORIZONTAL_RATIO = 1.0      # |dx| > |dy| × ratio 이면 수평
    WRIST_UNDER_SHOULDER = 0.6  # |wrist.x − shoulder.x| ≤ 몸통 길이 × 0.6
    STACK_X_TOL = 0.15          # front 정렬 허용 x 오차
    STACK_Y_TOL = 0.02          # 어깨보다 이만큼 위까지는 "아래"로 본다

    def __init__(self, threshold: float = VISIBILITY_THRESHOLD):
        self.threshold = threshold

    def _is_horizontal(self, a: Landmark, b: Landmark) -> bool:
        return abs(b.x - a.x) > abs(b.y - a.y) * self.HORIZONTAL_RATIO

    def _is_below(self, shoulder: Landmark, p: Landmark) -> bool:
        return (p.y >= shoulder.y - self.STACK_Y_TOL
                and abs(p.x - shoulder.x) <= self.STACK_X_TOL)

    def classify(self, joints: PostureJoints) -> PostureMode:
        shoulder, wrist, hip = joints.shoulder, joints.wrist, joints.hip
        if min(shoulder.vis, wrist.vis, hip.vis) < self.threshold:
            return PostureMode.NONE

        lower = joints.ankle if joints.ankle.vis >= self.threshold else joints.knee
        torso_len = cal_distance(shoulder, hip)
        leg_len = cal_distance(hip, lower)
        if torso_len < self.MIN_SEGMENT or leg_len < self.MIN_SEGMENT:
            return PostureMode.NONE

        is_side = (self._is_horizontal(shoulder, hip)
                   and self._is_horizontal(hip, lower)
                   and abs(wrist.x - shoulder.x) <= torso_len * self.WRIST_UNDER_SHOULDER)
        is_front = all(self._is_below(shoulder, p) for p in (wrist, hip, lower))

        if is_side and not is_front:
            return PostureMode.SIDE
        if is_front and not is_side:
            return PostureMode.FRONT
        return PostureMode.NONE


class UprightViewClassifier:
    """스쿼트/풀업: 필요한 관절 체인이 보이고 퇴화되지 않았으면 front."""

    MIN_SEGMENT = 0.05

    _CHAINS = {
        ExerciseKind.SQUAT: ("Hip", "Knee", "Ankle"),
        ExerciseKind.PULLUP: ("Shoulder", "Elbow", "Wrist"),
    }

    def __init__(self, kind: ExerciseKind, threshold: float = VISIBILITY_THRESHOLD):
        self.kind = kind
        self.threshold = threshold
        self.chain = self._CHAINS[kind]

    def classify(self, frame: PoseFrame) -> PostureMode:
        side = visible_side(frame, self.chain)
        points = [frame.side(side, j) for j in self.chain]
        if min(p.vis for p in points) < self.threshold:
            return PostureMode.NONE
        if cal_distance(points[0], points[1]) < self.MIN_SEGMENT:
            return PostureMode.NONE
        return PostureMode.FRONT


def classify_posture(kind: ExerciseKind, frame: PoseFrame,
                     threshold: float = VISIBILITY_THRESHOLD) -> PostureMode:
    """프레임 한 장의 뷰를 분류한다 (상태 없음)."""
    if kind is ExerciseKind.PUSHUP:
        return PushUpViewClassifier(threshold).classify(joints_for(frame))
    return UprightViewClassifier(kind, threshold).classify(frame)


class PostureLatch:
    """마지막 non-none 뷰를 grace_ms 동안 유지한다."""

    def __init__(self, grace_ms: int = 800):
        self.grace_ms = grace_ms
        self.last_view = PostureMode.NONE
        self.last_seen_ms: Optional[int] = None

    def reset(self):
        self.last_view = PostureMode.NONE
        self.last_seen_ms = None

    def update(self, raw_view: PostureMode, timestamp_ms: int) -> PostureMode:
        if raw_view is not PostureMode.NONE:
            if raw_view is not self.last_view:
                logger.debug(f"뷰 변경: {self.last_view.value} → {raw_view.value}")
            self.last_view = raw_view
            self.last_seen_ms = timestamp_ms
            return raw_view
        if not self.expired(timestamp_ms):
            return self.last_view
        return PostureMode.NONE

    def expired(self, timestamp_ms: int) -> bool:
        return self.last_seen_ms is None or (timestamp_ms - self.last_seen_ms) > self.grace_ms
