"""
기록된 landmark 시퀀스(JSON) → 엔진 재생 스크립트

입력 JSON 형식:
    {"frames": [{"timestamp_ms": 0, "landmarks": [{"x":..,"y":..,"z":..,"visibility":..}, ... 33개]}, ...]}
    또는 frames 리스트 자체

사용법:
    python scripts/replay_landmarks.py --input session.json --exercise pushup
    python scripts/replay_landmarks.py -i squat.json -e squat --target 5 --focus fullBody --landscape -o result.json
"""
import sys
import json
import argparse
import logging
from pathlib import Path

# 경로 설정
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from apps.api.analysis import FRAME_INTERVAL_MS, analyze_landmark_sequence, build_settings, frames_from_payload


def replay(input_path: str, exercise: str, target_reps: int = 10, sensitivity: str = "normal",
           focus: str = "armsOnly", portrait: bool = True, debug: bool = False,
           frame_interval_ms: int = FRAME_INTERVAL_MS, output_path: str = None) -> bool:
    """시퀀스를 엔진에 통과시키고 요약을 출력한다."""
    input_file = Path(input_path)
    if not input_file.exists():
        print(f"[ERROR] 입력 파일 없음: {input_file}")
        return False

    print(f"[1/3] 시퀀스 로드 중... ({input_file.name})")
    try:
        with open(input_file, encoding="utf-8") as f:
            payload = json.load(f)
        items = payload["frames"] if isinstance(payload, dict) else payload
        frames = frames_from_payload(items)
        settings = build_settings(exercise, target_reps, sensitivity, focus, portrait, debug)
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
        print(f"[ERROR] 입력 해석 실패: {e}")
        return False
    print(f"  -> {len(frames)}개 프레임")

    print(f"[2/3] 엔진 재생 중... (운동={settings.exercise.value}, 최소 간격 {frame_interval_ms}ms)")
    results = analyze_landmark_sequence(frames, settings, frame_interval_ms)
    for rep in results["reps"]:
        issues = ",".join(rep["issues"]) or "-"
        print(f"  Rep {rep['rep']:>2}: {rep['score']:>3}점  {rep['message']}  [{issues}]")

    final = results["result"] or {}
    print(f"\n=== 재생 완료 ===")
    print(f"  처리 프레임: {results['processed_frames']}/{results['total_frames']}")
    print(f"  반복 수: {final.get('repCount', 0)}회 (클린 {final.get('cleanRepCount', 0)}회)")
    print(f"  평균 점수: {final.get('overallScorePercent', 0)}점")
    if results["best_rep_index"] is not None:
        print(f"  최고 반복: #{results['best_rep_index'] + 1}, 최저 반복: #{results['worst_rep_index'] + 1}")

    if output_path:
        print("[3/3] 결과 JSON 저장 중...")
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, "w", encoding="utf-8") as f:
            json.dump(results, f, indent=2, ensure_ascii=False)
        print(f"  파일: {output_file}")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="landmark 시퀀스 JSON → 반복 카운트 / 피드백 재생"
    )
    parser.add_argument("--input", "-i", required=True,
                        help="landmark 시퀀스 JSON 경로")
    parser.add_argument("--exercise", "-e", required=True,
                        choices=["pushup", "squat", "pullup"],
                        help="운동 종류")
    parser.add_argument("--output", "-o", default=None,
                        help="결과 JSON 저장 경로")
    parser.add_argument("--target", type=int, default=10,
                        help="목표 반복 수 (기본: 10)")
    parser.add_argument("--sensitivity", default="normal",
                        choices=["relaxed", "normal", "strict"])
    parser.add_argument("--focus", default="armsOnly",
                        choices=["armsOnly", "fullBody"])
    parser.add_argument("--landscape", action="store_true",
                        help="가로 촬영 (기본: 세로)")
    parser.add_argument("--interval", type=int, default=FRAME_INTERVAL_MS,
                        help=f"최소 프레임 간격 ms (기본: {FRAME_INTERVAL_MS})")
    parser.add_argument("--debug", action="store_true",
                        help="디버그 로그 출력")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ok = replay(args.input, args.exercise, args.target, args.sensitivity, args.focus,
                portrait=not args.landscape, debug=args.debug,
                frame_interval_ms=args.interval, output_path=args.output)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
