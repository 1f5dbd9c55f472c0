"""
각도/거리/비율 계산 및 운동별 메트릭 산출 유틸리티

모든 분모는 EPS 이상으로 보정한다 (관절이 겹쳐도 0으로 나누지 않음).
NaN 입력은 그대로 전파된다.
"""
from typing import Dict, Sequence, Tuple, Union

import numpy as np

from rep_engine.exercise_config import ExerciseKind, Metric
from utils.keypoints import VISIBILITY_THRESHOLD, Landmark, PoseFrame, visible_side

EPS = 0.001

Point = Union[Landmark, Sequence[float]]


def _xy(p: Point) -> Tuple[float, float]:
    if isinstance(p, Landmark):
        return p.x, p.y
    return float(p[0]), float(p[1])


def angle_at(a: Point, vertex: Point, b: Point) -> float:
    """vertex에서 a, b 방향 사이의 각도(°, 0~180)를 atan2 차로 계산한다."""
    ax, ay = _xy(a)
    vx, vy = _xy(vertex)
    bx, by = _xy(b)
    radians = np.arctan2(by - vy, bx - vx) - np.arctan2(ay - vy, ax - vx)
    angle = float(np.abs(np.degrees(radians)))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def cal_distance(a: Point, b: Point) -> float:
    """두 점 사이의 유클리드 거리를 반환한다."""
    return float(np.hypot(*np.subtract(_xy(a), _xy(b))))


def midpoint(p1: Point, p2: Point) -> Tuple[float, float]:
    """두 점의 중점을 반환한다."""
    (x1, y1), (x2, y2) = _xy(p1), _xy(p2)
    return ((x1 + x2) / 2, (y1 + y2) / 2)


def safe_ratio(numerator: float, denominator: float, eps: float = EPS) -> float:
    return numerator / max(eps, denominator)


def depth_progress(current_angle: float, min_angle: float, max_angle: float) -> float:
    """lockout(max) → depth(min) 진행률 [0, 1]. 범위가 뒤집혀 있으면 0."""
    if max_angle <= min_angle:
        return 0.0
    progress = (max_angle - current_angle) / (max_angle - min_angle)
    return float(np.clip(progress, 0.0, 1.0))


# ─── 공통 헬퍼 ─────────────────────────────────────────

def _arm_angles(frame: PoseFrame) -> Tuple[float, float]:
    left = angle_at(frame["Left Shoulder"], frame["Left Elbow"], frame["Left Wrist"])
    right = angle_at(frame["Right Shoulder"], frame["Right Elbow"], frame["Right Wrist"])
    return left, right


def _arm_visible(frame: PoseFrame, side: str, threshold: float) -> bool:
    return min(frame.side(side, j).vis for j in ("Shoulder", "Elbow", "Wrist")) >= threshold


def _elbow_flexion(frame: PoseFrame, threshold: float) -> float:
    """보이는 팔의 팔꿈치 각도. 양팔 모두 보이거나 모두 안 보이면 평균."""
    left, right = _arm_angles(frame)
    left_ok = _arm_visible(frame, "Left", threshold)
    right_ok = _arm_visible(frame, "Right", threshold)
    if left_ok and not right_ok:
        return left
    if right_ok and not left_ok:
        return right
    return (left + right) / 2


def _flag(value: bool) -> float:
    return 1.0 if value else 0.0


# ─── 운동별 메트릭 ─────────────────────────────────────

def compute_pushup_metrics(frame: PoseFrame, threshold: float = VISIBILITY_THRESHOLD) -> Dict[Metric, float]:
    """
    푸시업 메트릭 (side / front 뷰 공통으로 전부 계산).

    - backAngle:       어깨–엉덩이–발목 (잘 보이는 쪽)
    - elbowFlare:      팔꿈치–어깨–엉덩이 (어깨 외전각)
    - hipDropRatio:    엉덩이 중점이 어깨 중점보다 아래로 처진 정도 / 몸통 길이
    - elbowFlareRatio: (팔꿈치 폭 − 어깨 폭) / 어깨 폭
    - shoulderAsym / hipAsym: 좌우 높이 차 / 폭
    """
    side = visible_side(frame, ("Shoulder", "Hip", "Ankle"))
    shoulder = frame.side(side, "Shoulder")
    hip = frame.side(side, "Hip")
    ankle = frame.side(side, "Ankle")
    elbow = frame.side(side, "Elbow")

    left_arm, right_arm = _arm_angles(frame)

    ls, rs = frame["Left Shoulder"], frame["Right Shoulder"]
    lh, rh = frame["Left Hip"], frame["Right Hip"]
    le, re = frame["Left Elbow"], frame["Right Elbow"]

    shoulder_mid = midpoint(ls, rs)
    hip_mid = midpoint(lh, rh)
    torso_len = cal_distance(shoulder_mid, hip_mid)
    shoulder_width = abs(ls.x - rs.x)
    hip_width = abs(lh.x - rh.x)
    elbow_width = abs(le.x - re.x)
    hip_dy = hip_mid[1] - shoulder_mid[1]

    hips_visible = max(lh.vis, rh.vis) >= threshold
    arms_visible = _arm_visible(frame, "Left", threshold) or _arm_visible(frame, "Right", threshold)

    return {
        Metric.ELBOW_FLEXION: _elbow_flexion(frame, threshold),
        Metric.BACK_ANGLE: angle_at(shoulder, hip, ankle),
        Metric.ELBOW_FLARE: angle_at(elbow, shoulder, hip),
        Metric.HIP_DROP_RATIO: safe_ratio(max(0.0, hip_dy), torso_len),
        Metric.HIP_RISE_RATIO: safe_ratio(max(0.0, -hip_dy), torso_len),
        Metric.ELBOW_FLARE_RATIO: safe_ratio(max(0.0, elbow_width - shoulder_width), shoulder_width),
        Metric.SHOULDER_ASYM: safe_ratio(abs(ls.y - rs.y), shoulder_width),
        Metric.HIP_ASYM: safe_ratio(abs(lh.y - rh.y), hip_width),
        Metric.ELBOW_ANGLE_DIFF: abs(left_arm - right_arm),
        Metric.HIPS_VISIBLE: _flag(hips_visible),
        Metric.ARMS_VISIBLE: _flag(arms_visible),
    }


def compute_squat_metrics(frame: PoseFrame, threshold: float = VISIBILITY_THRESHOLD) -> Dict[Metric, float]:
    """스쿼트 메트릭: 무릎 각도, 무릎 안쪽 무너짐, 상체 숙임."""
    side = visible_side(frame, ("Hip", "Knee", "Ankle"))
    shoulder = frame.side(side, "Shoulder")
    hip = frame.side(side, "Hip")
    knee = frame.side(side, "Knee")
    ankle = frame.side(side, "Ankle")

    hip_width = abs(frame["Left Hip"].x - frame["Right Hip"].x)
    torso_len = cal_distance(shoulder, hip)
    body_visible = min(hip.vis, knee.vis, ankle.vis) >= threshold

    return {
        Metric.KNEE_ANGLE: angle_at(hip, knee, ankle),
        Metric.KNEE_VALGUS: safe_ratio(max(0.0, ankle.x - knee.x), hip_width),
        Metric.FORWARD_LEAN: safe_ratio(max(0.0, shoulder.x - hip.x), torso_len),
        Metric.BODY_VISIBLE: _flag(body_visible),
    }


def compute_pullup_metrics(frame: PoseFrame, threshold: float = VISIBILITY_THRESHOLD) -> Dict[Metric, float]:
    """풀업 메트릭: 팔꿈치 각도, 좌우 팔꿈치 각도 차."""
    left_arm, right_arm = _arm_angles(frame)
    side = visible_side(frame, ("Shoulder", "Elbow", "Wrist"))
    return {
        Metric.ELBOW_FLEXION: _elbow_flexion(frame, threshold),
        Metric.ELBOW_ANGLE_DIFF: abs(left_arm - right_arm),
        Metric.BODY_VISIBLE: _flag(_arm_visible(frame, side, threshold)),
    }


_METRIC_FUNCS = {
    ExerciseKind.PUSHUP: compute_pushup_metrics,
    ExerciseKind.SQUAT: compute_squat_metrics,
    ExerciseKind.PULLUP: compute_pullup_metrics,
}


def compute_metrics(kind: ExerciseKind, frame: PoseFrame,
                    threshold: float = VISIBILITY_THRESHOLD) -> Dict[Metric, float]:
    return _METRIC_FUNCS[kind](frame, threshold)
