"""
33 관절 포즈 스켈레톤 정의 및 Landmark / PoseFrame 변환 유틸리티

엔진, API, 리플레이 스크립트가 모두 이 모듈을 참조한다.
좌표는 [0, 1] 정규화 이미지 좌표, visibility는 [0, 1] 신뢰도.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

# ===== 33 관절 매핑 (표준 포즈 스켈레톤 순서) =====
POSE_LANDMARK_MAP = {
    "Nose": 0,
    "Left Eye Inner": 1,
    "Left Eye": 2,
    "Left Eye Outer": 3,
    "Right Eye Inner": 4,
    "Right Eye": 5,
    "Right Eye Outer": 6,
    "Left Ear": 7,
    "Right Ear": 8,
    "Mouth Left": 9,
    "Mouth Right": 10,
    "Left Shoulder": 11,
    "Right Shoulder": 12,
    "Left Elbow": 13,
    "Right Elbow": 14,
    "Left Wrist": 15,
    "Right Wrist": 16,
    "Left Pinky": 17,
    "Right Pinky": 18,
    "Left Index": 19,
    "Right Index": 20,
    "Left Thumb": 21,
    "Right Thumb": 22,
    "Left Hip": 23,
    "Right Hip": 24,
    "Left Knee": 25,
    "Right Knee": 26,
    "Left Ankle": 27,
    "Right Ankle": 28,
    "Left Heel": 29,
    "Right Heel": 30,
    "Left Foot Index": 31,
    "Right Foot Index": 32,
}

NUM_LANDMARKS = len(POSE_LANDMARK_MAP)

# ===== 신뢰도 임계값 =====
VISIBILITY_THRESHOLD = 0.45


@dataclass(frozen=True)
class Landmark:
    """정규화 좌표 한 점. visibility가 없으면 0으로 취급한다."""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    @property
    def vis(self) -> float:
        return self.visibility if self.visibility is not None else 0.0


@dataclass(frozen=True)
class PoseFrame:
    """한 프레임의 관절 좌표 묶음 + 타임스탬프(ms)."""
    landmarks: Tuple[Landmark, ...]
    timestamp_ms: int

    def __getitem__(self, name: str) -> Landmark:
        return self.landmarks[POSE_LANDMARK_MAP[name]]

    def side(self, side: str, joint: str) -> Landmark:
        """side="Left"/"Right", joint="Shoulder" 형태로 조회한다."""
        return self[f"{side} {joint}"]

    @classmethod
    def from_dicts(cls, points: Iterable[Dict], timestamp_ms: int) -> "PoseFrame":
        """
        {"x":..,"y":..,"z":..,"visibility":..} dict 리스트 → PoseFrame.

        Raises:
            ValueError: 관절 개수가 33개 미만이거나 좌표가 숫자가 아닐 때
        """
        landmarks: List[Landmark] = []
        for pt in points:
            try:
                vis = pt.get("visibility", pt.get("vis"))
                landmarks.append(Landmark(
                    x=float(pt["x"]),
                    y=float(pt["y"]),
                    z=float(pt.get("z", 0.0)),
                    visibility=None if vis is None else float(vis),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"잘못된 landmark 형식: {pt!r} ({e})") from e

        if len(landmarks) < NUM_LANDMARKS:
            raise ValueError(f"landmark {NUM_LANDMARKS}개가 필요합니다 (입력 {len(landmarks)}개)")
        return cls(landmarks=tuple(landmarks[:NUM_LANDMARKS]), timestamp_ms=int(timestamp_ms))


def visible_side(frame: PoseFrame, joints: Iterable[str] = ("Shoulder", "Elbow", "Wrist", "Hip")) -> str:
    """visibility 합이 더 큰 쪽("Left"/"Right")을 반환한다."""
    joints = tuple(joints)
    left = sum(frame.side("Left", j).vis for j in joints)
    right = sum(frame.side("Right", j).vis for j in joints)
    return "Left" if left >= right else "Right"
