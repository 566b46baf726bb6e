# kernel.py
import math
import time
import logging
from typing import NamedTuple

import numpy as np
from numba import njit, prange
from numba.core.errors import NumbaError

from simulation.camera import V_SIGN
from simulation.geodesic import (
    integrate_ray, ABSORBED, ESCAPED, DIVERGED, BUDGET_EXHAUSTED,
)
from simulation.background import sample_environment
from simulation.layout import (
    CAM_POS, CAM_RIGHT, CAM_UP, CAM_FORWARD, CAM_TAN_HALF_FOV, CAM_ASPECT,
    camera_block_to_array, disk_block_to_array, pack_camera_block, pack_disk_block,
)
from simulation.paths import PathBuffer
from simulation.scene import SceneSetup

logging.getLogger('numba').setLevel(logging.ERROR)

# Outcome tints (soft visual cues, not physical intensities)
DISK_TINT_R = 0.5
DISK_TINT_G = 0.5 / 1.5
DISK_TINT_B = 0.0
ESCAPED_GAIN = 1.1
DIVERGED_GAIN = 1.1
ABSORBED_GAIN = 0.25

# Mip bias of the environment lookup while the camera moves
MOVING_LOD = 0.5

# fparams layout
F_DISK_R1, F_DISK_R2, F_RS, F_BASE_STEP, F_ESCAPE_R, F_TILES, F_LOD = range(7)
# iparams layout
I_STEPS, I_PATH_STRIDE, I_NUM_SEEDS = range(3)


class TraceResult(NamedTuple):
    """Output of one dispatch: RGBA float32 image (H, W, 4) and per-pixel status (H, W)."""
    image: np.ndarray
    status: np.ndarray


@njit(cache=True, error_model='numpy')
def trace_pixel(px, py, width, height, cam, fparams, iparams, env0, env1,
                seeds, path_points, path_counts, out_image, out_status):
    """Trace the camera ray through pixel (px, py) and write its colour and status."""
    path_id = -1
    for k in range(iparams[I_NUM_SEEDS]):
        if seeds[k, 0] == px and seeds[k, 1] == py:
            path_id = k
            break

    thf = cam[CAM_TAN_HALF_FOV]
    u = (2.0 * (px + 0.5) / width - 1.0) * cam[CAM_ASPECT] * thf
    v = (1.0 - 2.0 * (py + 0.5) / height) * thf
    dx = u * cam[CAM_RIGHT] + V_SIGN * v * cam[CAM_UP] + cam[CAM_FORWARD]
    dy = u * cam[CAM_RIGHT + 1] + V_SIGN * v * cam[CAM_UP + 1] + cam[CAM_FORWARD + 1]
    dz = u * cam[CAM_RIGHT + 2] + V_SIGN * v * cam[CAM_UP + 2] + cam[CAM_FORWARD + 2]
    n = math.sqrt(dx * dx + dy * dy + dz * dz)
    if n > 0.0:
        dx /= n
        dy /= n
        dz /= n

    status, steps, disk_hits, sampled, ex, ey, ez = integrate_ray(
        cam[CAM_POS], cam[CAM_POS + 1], cam[CAM_POS + 2], dx, dy, dz,
        fparams[F_RS], fparams[F_BASE_STEP], fparams[F_ESCAPE_R], iparams[I_STEPS],
        fparams[F_DISK_R1], fparams[F_DISK_R2],
        path_id, iparams[I_PATH_STRIDE], path_points, path_counts)

    r = 0.0
    g = 0.0
    b = 0.0
    if sampled:
        r, g, b = sample_environment(env0, env1, ex, ey, ez, fparams[F_TILES], fparams[F_LOD])

    if disk_hits > 0:
        r += DISK_TINT_R
        g += DISK_TINT_G
        b += DISK_TINT_B
    gain = 1.0
    if status == ESCAPED:
        gain = ESCAPED_GAIN
    elif status == ABSORBED:
        gain = ABSORBED_GAIN
    elif status == DIVERGED:
        gain = DIVERGED_GAIN

    out_image[py, px, 0] = r * gain
    out_image[py, px, 1] = g * gain
    out_image[py, px, 2] = b * gain
    out_image[py, px, 3] = 1.0
    out_status[py, px] = status


@njit(parallel=True, cache=True, error_model='numpy')
def _trace_grid_cpu(cam, fparams, iparams, env0, env1, seeds, path_points, path_counts,
                    out_image, out_status):
    height = out_image.shape[0]
    width = out_image.shape[1]
    for idx in prange(height * width):
        py = idx // width
        px = idx - py * width
        trace_pixel(px, py, width, height, cam, fparams, iparams, env0, env1,
                    seeds, path_points, path_counts, out_image, out_status)


def build_kernel_arguments(camera_block, disk_block, params, seeds):
    """Unpack the fixed-layout blocks and scene snapshot into the kernel's flat arrays."""
    cam = camera_block_to_array(camera_block)
    disk = disk_block_to_array(disk_block)
    fparams = np.array([
        disk[0], disk[1],
        params.rs, params.affine_step, params.escape_radius,
        float(params.background_tiles),
        MOVING_LOD if params.moving else 0.0,
    ], dtype=np.float64)
    seeds = np.asarray(seeds, dtype=np.int32).reshape(-1, 2)
    if seeds.shape[0] == 0:
        seeds = np.full((1, 2), -1, dtype=np.int32)
        n_seeds = 0
    else:
        n_seeds = seeds.shape[0]
    iparams = np.array([params.steps, params.path_stride, n_seeds], dtype=np.int64)
    return cam, fparams, iparams, np.ascontiguousarray(seeds)


class KernelExecutor:
    """
    Parallel kernel execution service (CPU backend).

    `dispatch` runs the trace kernel over a width x height grid with numba's
    threaded `prange` and returns only after every pixel has been written.
    """
    name = 'cpu'

    def compile(self, env):
        """Force compilation on a 1x1 grid so a broken kernel aborts start-up."""
        basis = (np.array([-1.0, 0.0, 0.0]), np.array([0.0, 0.0, 1.0]), np.array([0.0, 1.0, 0.0]))
        cam_block = pack_camera_block(np.array([10000.0, 0.0, 0.0]), basis, 0.5, 1.0, False)
        params = SceneSetup(integration_steps_still=1).snapshot(moving=False)
        t0 = time.time()
        try:
            self.dispatch(cam_block, pack_disk_block(0.0, 0.0), params, env, PathBuffer(), [], 1, 1)
        except NumbaError as e:
            raise RuntimeError(f"Trace kernel failed to compile ({self.name}): {e}") from e
        logging.info(f"Trace kernel ready ({self.name}) in {time.time() - t0:.1f}s")

    def dispatch(self, camera_block, disk_block, params, env, path_buffer, seeds, width, height):
        cam, fparams, iparams, seeds = build_kernel_arguments(camera_block, disk_block, params, seeds)
        out_image = np.zeros((height, width, 4), dtype=np.float32)
        out_status = np.zeros((height, width), dtype=np.int8)
        self._launch(cam, fparams, iparams, env.level0, env.level1, seeds,
                     path_buffer.points, path_buffer.counts, out_image, out_status)
        return TraceResult(out_image, out_status)

    def _launch(self, cam, fparams, iparams, env0, env1, seeds, path_points, path_counts,
                out_image, out_status):
        _trace_grid_cpu(cam, fparams, iparams, env0, env1, seeds, path_points, path_counts,
                        out_image, out_status)


def make_executor(use_cuda=False):
    if use_cuda:
        from simulation.cuda_geodesic import CUDAKernelExecutor
        return CUDAKernelExecutor()
    return KernelExecutor()


def status_counts(status):
    """Count pixels per terminal status, e.g. for logging a frame summary."""
    return {
        'absorbed': int(np.count_nonzero(status == ABSORBED)),
        'escaped': int(np.count_nonzero(status == ESCAPED)),
        'diverged': int(np.count_nonzero(status == DIVERGED)),
        'budget_exhausted': int(np.count_nonzero(status == BUDGET_EXHAUSTED)),
    }
