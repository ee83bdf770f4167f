'''
Runs the TTC frontend over a KITTI raw sequence for a set of
detector/descriptor combinations, writes one CSV per run and plots
LiDAR vs camera TTC of the tracked object closest ahead.
'''
from __future__ import annotations

import argparse
import csv
import logging
from pathlib import Path
from typing import List, Tuple

import numpy as np
import matplotlib.pyplot as plt

from ttc_fusion.providers.kitti_provider import KittiProvider, LabelFileDetector
from ttc_fusion.frontend.ttc_frontend import FrontendParams, TTCFrontend
from ttc_fusion.core.calib.kitti_calib import load_kitti_calib
from ttc_fusion.core.camera.features import DetectorParams, FeatureExtractor
from ttc_fusion.core.camera.matching import DescriptorMatcher, MatcherParams
from ttc_fusion.core.camera.correspondence_filter import CorrespondenceFilterParams
from ttc_fusion.core.lidar.ttc_lidar import LidarTTCParams

DETECTORS = ["SHITOMASI", "HARRIS", "FAST", "BRISK", "ORB"]
DESCRIPTORS = ["BRISK", "ORB", "FREAK"]


def combinations(detectors: List[str], descriptors: List[str]) -> List[Tuple[str, str]]:
    combos = [(det, desc) for det in detectors for desc in descriptors if desc != "AKAZE"]
    if "AKAZE" in detectors or "AKAZE" in descriptors:
        combos.append(("AKAZE", "AKAZE"))
    return combos


def run_one(args, calib, detector: str, descriptor: str, out_dir: Path) -> Path:
    labels = LabelFileDetector(args.labels, min_confidence=args.min_conf) if args.labels else None
    provider = KittiProvider(args.seq, detector=labels, first=args.first, last=args.last, step=args.step)

    extractor = FeatureExtractor(DetectorParams(detector=detector, descriptor=descriptor, max_keypoints=args.max_kpts))
    matcher = DescriptorMatcher(MatcherParams(matcher=args.matcher, selector=args.selector, descriptor=descriptor))
    params = FrontendParams(
        frame_rate=10.0 / args.step,
        corr_filter=CorrespondenceFilterParams(strategy=args.filter),
        lidar_ttc=LidarTTCParams(robust=args.robust),
    )
    fe = TTCFrontend(calib=calib, provider=provider, extractor=extractor, matcher=matcher, params=params)

    csv_path = out_dir / f"ttc_{detector}_{descriptor}.csv"
    rows = []
    while True:
        res = fe.step()
        if res is None:
            break
        if res.is_first:
            continue
        for r in res.region_ttcs:
            rows.append([
                res.frame.index, r.prev_box_id, r.curr_box_id,
                r.lidar.ttc_s, r.lidar.status, r.camera.ttc_s, r.camera.status,
                r.n_lidar_curr, r.n_matches,
            ])
        # the preceding vehicle is the region with the most LiDAR hits in the ego lane
        if res.region_ttcs:
            best = max(res.region_ttcs, key=lambda r: r.n_lidar_curr)
            print(f"[RUN] {detector}/{descriptor} frame={res.frame.index} box={best.curr_box_id} "
                  f"lidar={best.lidar.ttc_s:.2f}s ({best.lidar.status}) "
                  f"camera={best.camera.ttc_s:.2f}s ({best.camera.status})")

    with csv_path.open("w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["frame", "prev_box", "curr_box", "ttc_lidar", "lidar_status",
                    "ttc_camera", "camera_status", "n_lidar", "n_matches"])
        w.writerows(rows)
    print(f"Saved {len(rows)} rows to {csv_path}")
    return csv_path


def plot_run(csv_path: Path) -> None:
    frames, lidar, camera, n_lidar = [], [], [], []
    with csv_path.open("r", newline="") as f:
        for row in csv.DictReader(f):
            frames.append(int(row["frame"]))
            lidar.append(float(row["ttc_lidar"]))
            camera.append(float(row["ttc_camera"]))
            n_lidar.append(int(row["n_lidar"]))
    if not frames:
        return

    frames_a = np.asarray(frames)
    lidar_a = np.asarray(lidar)
    camera_a = np.asarray(camera)
    n_a = np.asarray(n_lidar)

    # keep one region per frame: most LiDAR support
    keep = []
    for fr in np.unique(frames_a):
        idx = np.flatnonzero(frames_a == fr)
        keep.append(idx[np.argmax(n_a[idx])])
    keep = np.asarray(keep)

    plt.figure()
    plt.plot(frames_a[keep], lidar_a[keep], "o-", label="LiDAR TTC", color="tab:blue")
    plt.plot(frames_a[keep], camera_a[keep], "x-", label="Camera TTC", color="tab:orange")
    plt.xlabel("frame")
    plt.ylabel("TTC (s)")
    plt.title(csv_path.stem)
    plt.legend()
    fig_path = csv_path.with_suffix(".png")
    plt.savefig(fig_path, dpi=200, bbox_inches="tight")
    plt.close()
    print(f"Saved TTC plot to {fig_path}")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--seq", required=True, help="KITTI raw sequence root, e.g. 2011_09_26_drive_0001_sync")
    ap.add_argument("--calib", required=True, help="directory holding calib_cam_to_cam.txt / calib_velo_to_cam.txt")
    ap.add_argument("--labels", default=None, help="per-frame detection txt files")
    ap.add_argument("--min-conf", type=float, default=0.2)
    ap.add_argument("--first", type=int, default=0)
    ap.add_argument("--last", type=int, default=None)
    ap.add_argument("--step", type=int, default=1)
    ap.add_argument("--detectors", nargs="+", default=DETECTORS)
    ap.add_argument("--descriptors", nargs="+", default=DESCRIPTORS)
    ap.add_argument("--akaze", action="store_true", help="also run AKAZE/AKAZE")
    ap.add_argument("--matcher", default="MAT_BF", choices=["MAT_BF", "MAT_FLANN"])
    ap.add_argument("--selector", default="SEL_KNN", choices=["SEL_NN", "SEL_KNN"])
    ap.add_argument("--filter", default="median_band", choices=["median_band", "iqr"])
    ap.add_argument("--robust", action="store_true", help="median of the 5 closest LiDAR returns")
    ap.add_argument("--max-kpts", type=int, default=None)
    ap.add_argument("--out", default="results")
    ap.add_argument("--plot", action="store_true")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")

    calib_dir = Path(args.calib)
    calib = load_kitti_calib(calib_dir / "calib_cam_to_cam.txt", calib_dir / "calib_velo_to_cam.txt")

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    detectors = [d.upper() for d in args.detectors]
    descriptors = [d.upper() for d in args.descriptors]
    if args.akaze:
        detectors.append("AKAZE")

    for det, desc in combinations(detectors, descriptors):
        if det == "SIFT" and desc == "ORB":
            continue
        try:
            csv_path = run_one(args, calib, det, desc, out_dir)
        except ValueError as e:
            # e.g. FREAK without the OpenCV contrib modules
            print(f"[SKIP] {det}/{desc}: {e}")
            continue
        if args.plot:
            plot_run(csv_path)


if __name__ == "__main__":
    main()
