# paths.py
import math
import logging
from typing import NamedTuple, List

import numpy as np
import pandas as pd

from simulation.layout import MAX_TRACE_PATHS, MAX_TRACE_SAMPLES

# Recorded samples beyond this magnitude are treated as garbage
MAX_ABS_COORD = 1e9
# Paths shorter than this are drawn as points only
MIN_STRIP_POINTS = 4

SEED_COUNT = 5
SEED_HALF_ANGLE = 0.08


class PathBuffer:
    """
    Host copy of the shared path buffer.

    points[k, i] is the i-th recorded (x, y, z, 1) sample of path k and
    counts[k] the number of valid samples. Every path slot is owned by exactly
    one seed pixel, so kernel threads never write to the same element.
    """
    def __init__(self, max_paths=MAX_TRACE_PATHS, max_samples=MAX_TRACE_SAMPLES):
        self.points = np.zeros((max_paths, max_samples, 4), dtype=np.float32)
        self.counts = np.zeros(max_paths, dtype=np.int32)

    @property
    def max_paths(self):
        return self.points.shape[0]

    @property
    def max_samples(self):
        return self.points.shape[1]

    def clear(self):
        self.counts[:] = 0


class PathOverlay(NamedTuple):
    """points: every captured sample (N, 3); strips: the paths long enough to connect with lines."""
    points: np.ndarray
    strips: List[np.ndarray]


def seed_directions(camera, count=SEED_COUNT, half_angle=SEED_HALF_ANGLE):
    """Unit directions evenly spaced in azimuth on a cone of *half_angle* radians around the view axis."""
    fwd, right, up = camera.build_basis()
    ca, sa = math.cos(half_angle), math.sin(half_angle)
    dirs = []
    for k in range(count):
        phi = 2.0 * math.pi * k / count
        d = ca * fwd + sa * (math.cos(phi) * right + math.sin(phi) * up)
        dirs.append(d / np.linalg.norm(d))
    return dirs


def seed_pixels(camera, width, height, count=SEED_COUNT, half_angle=SEED_HALF_ANGLE):
    """
    Pixel coordinates (x, y) on a width x height grid for the seed directions.

    Directions behind the camera or outside the frame are dropped, as are
    duplicates; at most MAX_TRACE_PATHS pixels are returned. The position in
    the list is the path slot the kernel records into.
    """
    pixels = []
    for d in seed_directions(camera, count, half_angle):
        x, y, visible = camera.world_direction_to_pixel(d, width, height)
        if not visible or (x, y) in pixels:
            continue
        pixels.append((x, y))
        if len(pixels) == MAX_TRACE_PATHS:
            break
    return pixels


def extract_paths(buffer, n_paths):
    """Read back the first *n_paths* recorded paths as float64 (N, 3) arrays."""
    paths = []
    for k in range(min(n_paths, buffer.max_paths)):
        count = int(np.clip(buffer.counts[k], 0, buffer.max_samples))
        pts = buffer.points[k, :count, :3].astype(np.float64)
        keep = np.all(np.isfinite(pts), axis=1) & np.all(np.abs(pts) <= MAX_ABS_COORD, axis=1)
        paths.append(pts[keep])
    return paths


def build_overlay(paths):
    if paths:
        points = np.concatenate([p for p in paths] + [np.zeros((0, 3))], axis=0)
    else:
        points = np.zeros((0, 3))
    strips = [p for p in paths if len(p) >= MIN_STRIP_POINTS]
    return PathOverlay(points, strips)


def paths_to_dataframe(paths, length_unit=1.0):
    """One row per sample: ray_id, point_idx, x, y, z, r (coordinates scaled by *length_unit*)."""
    rows = []
    for ridx, traj in enumerate(paths):
        for pidx, (px, py, pz) in enumerate(traj * length_unit):
            rows.append({'ray_id': ridx, 'point_idx': pidx, 'x': px, 'y': py, 'z': pz,
                         'r': float(np.linalg.norm([px, py, pz]))})
    return pd.DataFrame(rows, columns=['ray_id', 'point_idx', 'x', 'y', 'z', 'r'])


def save_paths_csv(paths, out_path, length_unit=1.0):
    df = paths_to_dataframe(paths, length_unit)
    df.to_csv(out_path, index=False)
    logging.info(f"Saved {len(paths)} captured rays ({len(df)} samples) to {out_path}")
    return df
