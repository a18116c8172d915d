"""Render one scene over a sweep of seeds and sample counts and export a CSV summary."""

from __future__ import annotations

import argparse
import csv
from pathlib import Path
import sys
import time

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from ptroute.artifacts import load_artifact
from ptroute.config import RenderSettings
from ptroute.model import SceneFile
from ptroute.renderer import render_scene


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run render sweep experiments")
    parser.add_argument("--scene", type=Path, required=True, help="scene.json to render")
    parser.add_argument("--seeds", type=int, nargs="+", default=[1, 2, 3])
    parser.add_argument("--spp", type=int, nargs="+", default=[4, 16, 64])
    parser.add_argument("--width", type=int, default=320)
    parser.add_argument("--height", type=int, default=180)
    parser.add_argument("--bounces", type=int, default=4)
    parser.add_argument("--threads", type=int, default=0)
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("outputs/render_series.csv"),
        help="CSV output path",
    )
    return parser.parse_args()


def mean_luminance(image: np.ndarray) -> float:
    """Rec. 709 luma averaged over the image, in [0, 1]."""

    rgb = image.astype(np.float64) / 255.0
    luma = 0.2126 * rgb[..., 0] + 0.7152 * rgb[..., 1] + 0.0722 * rgb[..., 2]
    return float(luma.mean())


def main() -> None:
    args = parse_args()
    scene = load_artifact(args.scene, SceneFile)

    rows = []
    for seed in args.seeds:
        for spp in args.spp:
            settings = RenderSettings(
                width=args.width,
                height=args.height,
                spp=spp,
                bounces=args.bounces,
                seed=seed,
                threads=args.threads,
                progress_every=0,
            )
            started = time.perf_counter()
            image = render_scene(scene, settings)
            elapsed = time.perf_counter() - started
            rows.append(
                {
                    "seed": seed,
                    "spp": spp,
                    "width": args.width,
                    "height": args.height,
                    "bounces": args.bounces,
                    "mean_luminance": mean_luminance(image),
                    "seconds": elapsed,
                }
            )
            print(f"seed {seed} spp {spp}: {elapsed:.2f}s")

    args.output.parent.mkdir(parents=True, exist_ok=True)
    with args.output.open("w", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=rows[0].keys())
        writer.writeheader()
        writer.writerows(rows)


if __name__ == "__main__":
    main()
