'''
projects one KITTI scan into its image
prints how many points land in front of the camera / in the image / per box
optionally saves an overlay coloured by forward distance
'''
from __future__ import annotations
import argparse
from pathlib import Path
import numpy as np
import cv2

from ttc_fusion.core.calib.kitti_calib import load_kitti_calib, load_object_calib
from ttc_fusion.core.lidar.crop import crop_lidar_points
from ttc_fusion.core.lidar.projection import ProjectionParams, assign_points_to_regions
from ttc_fusion.providers.kitti_provider import KittiProvider, LabelFileDetector


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--seq", required=True, help="KITTI raw sequence root")
    calib_src = ap.add_mutually_exclusive_group(required=True)
    calib_src.add_argument("--calib", help="directory with calib_cam_to_cam.txt / calib_velo_to_cam.txt")
    calib_src.add_argument("--calib-file", help="object benchmark calib file (P2 / R0_rect / Tr_velo_to_cam)")
    ap.add_argument("--labels", default=None)
    ap.add_argument("--frame", type=int, default=0, help="position in the sequence")
    ap.add_argument("--shrink", type=float, default=0.10)
    ap.add_argument("--save", default=None, help="overlay image path")
    args = ap.parse_args()

    if args.calib_file:
        calib = load_object_calib(args.calib_file)
    else:
        calib_dir = Path(args.calib)
        calib = load_kitti_calib(calib_dir / "calib_cam_to_cam.txt", calib_dir / "calib_velo_to_cam.txt")
    print("projection matrix:\n", calib.projection_matrix)

    labels = LabelFileDetector(args.labels) if args.labels else None
    provider = KittiProvider(args.seq, detector=labels, first=args.frame, last=args.frame + 1)
    if not provider.has_next():
        print("No frame at that position.")
        return
    ev = provider.next_event()

    pts = ev.lidar_points
    uv, ok = calib.project(pts)
    h, w = ev.image.shape[:2]
    in_img = ok & (uv[:, 0] >= 0) & (uv[:, 0] < w) & (uv[:, 1] >= 0) & (uv[:, 1] < h)
    print("scan points      :", pts.shape[0])
    print("in front of cam  :", int(ok.sum()))
    print("inside the image :", int(in_img.sum()))

    cropped = crop_lidar_points(pts)
    print("ego-lane crop    :", cropped.shape[0])

    regions = ev.regions or []
    clusters = assign_points_to_regions(regions, cropped, calib, ProjectionParams(shrink_factor=args.shrink))
    for r in regions:
        c = clusters[r.box_id]
        xmin = float(c[:, 0].min()) if len(c) else float("nan")
        print(f"  box {r.box_id} ({r.label or r.class_id}): {len(c)} pts, xmin={xmin:.2f} m")

    if args.save:
        vis = ev.image.copy()
        max_x = 25.0
        for (u, v), x in zip(uv[in_img], pts[in_img, 0]):
            red = int(min(1.0, max(0.0, x / max_x)) * 255)
            cv2.circle(vis, (int(u), int(v)), 2, (0, 255 - red, red), -1)
        for r in regions:
            p0 = (int(r.roi.x), int(r.roi.y))
            p1 = (int(r.roi.x + r.roi.width), int(r.roi.y + r.roi.height))
            cv2.rectangle(vis, p0, p1, (0, 255, 0), 2)
        cv2.imwrite(args.save, vis)
        print("Saved overlay to", args.save)

    d = np.linalg.norm(pts[in_img, :3], axis=1)
    if d.size:
        print("range mean/95/max:", float(d.mean()), float(np.percentile(d, 95)), float(d.max()))


if __name__ == "__main__":
    main()
