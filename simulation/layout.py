#layout.py
"""
Fixed-layout parameter blocks shared with the trace kernel.

The records follow std140 / std430 alignment (vec3 padded to 16 bytes,
scalars packed after them) so the same bytes could be bound to a GPU uniform
or storage buffer unchanged. The numba kernels read them through
`camera_block_to_array` / `disk_block_to_array`.
"""
import numpy as np

MAX_TRACE_PATHS = 5
MAX_TRACE_SAMPLES = 5000

CAMERA_BLOCK = np.dtype({
    'names':   ['cam_pos', 'cam_right', 'cam_up', 'cam_forward', 'tan_half_fov', 'aspect', 'moving'],
    'formats': [('<f4', 3), ('<f4', 3), ('<f4', 3), ('<f4', 3), '<f4', '<f4', '<i4'],
    'offsets': [0, 16, 32, 48, 64, 68, 72],
    'itemsize': 80,
})

DISK_BLOCK = np.dtype({
    'names':   ['r1', 'r2'],
    'formats': ['<f4', '<f4'],
    'offsets': [0, 4],
    'itemsize': 16,
})

# vec4 points[MAX_TRACE_PATHS * MAX_TRACE_SAMPLES]; int counts[MAX_TRACE_PATHS]
PATH_POINTS_BYTES = 4 * 4 * MAX_TRACE_PATHS * MAX_TRACE_SAMPLES
PATH_BUFFER_BYTES = PATH_POINTS_BYTES + 4 * MAX_TRACE_PATHS

# Order of the float64 camera vector handed to the kernels
CAM_POS, CAM_RIGHT, CAM_UP, CAM_FORWARD, CAM_TAN_HALF_FOV, CAM_ASPECT = 0, 3, 6, 9, 12, 13
CAMERA_VECTOR_SIZE = 14


def pack_camera_block(position, basis, tan_half_fov, aspect, moving):
    """position in kernel length units; basis = (forward, right, up)."""
    fwd, right, up = basis
    block = np.zeros((), dtype=CAMERA_BLOCK)
    block['cam_pos'] = position
    block['cam_right'] = right
    block['cam_up'] = up
    block['cam_forward'] = fwd
    block['tan_half_fov'] = tan_half_fov
    block['aspect'] = aspect
    block['moving'] = 1 if moving else 0
    return block


def pack_disk_block(r1, r2):
    block = np.zeros((), dtype=DISK_BLOCK)
    block['r1'] = r1
    block['r2'] = r2
    return block


def camera_block_to_array(block):
    out = np.empty(CAMERA_VECTOR_SIZE, dtype=np.float64)
    out[CAM_POS:CAM_POS + 3] = block['cam_pos']
    out[CAM_RIGHT:CAM_RIGHT + 3] = block['cam_right']
    out[CAM_UP:CAM_UP + 3] = block['cam_up']
    out[CAM_FORWARD:CAM_FORWARD + 3] = block['cam_forward']
    out[CAM_TAN_HALF_FOV] = block['tan_half_fov']
    out[CAM_ASPECT] = block['aspect']
    return out


def disk_block_to_array(block):
    return np.array([block['r1'], block['r2']], dtype=np.float64)
