import math
import os
import logging

import numpy as np
from numba import njit
from PIL import Image, UnidentifiedImageError

INV_TWO_PI = 0.15915494309189535
INV_PI = 0.3183098861837907


class EnvironmentMap:
    """
    Decoded equirectangular background as RGBA float32 in [0, 1], with a
    two-level mip chain (level 1 is a 2x2 box filter of level 0).
    """
    def __init__(self, pixels, name='<memory>'):
        pixels = np.asarray(pixels)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4) or pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise RuntimeError(f"Environment image {name} must be an HxWx3 or HxWx4 pixel buffer, got shape {pixels.shape}")
        if pixels.dtype == np.uint8:
            pixels = pixels.astype(np.float32) / 255.0
        pixels = pixels.astype(np.float32)
        if pixels.shape[2] == 3:
            alpha = np.ones(pixels.shape[:2] + (1,), dtype=np.float32)
            pixels = np.concatenate([pixels, alpha], axis=2)
        self.name = name
        self.level0 = np.ascontiguousarray(pixels)
        self.level1 = _downsample(self.level0)

    @property
    def size(self):
        return self.level0.shape[1], self.level0.shape[0]


def _downsample(img):
    h, w = img.shape[:2]
    if h < 2 or w < 2:
        return img.copy()
    h2, w2 = h // 2, w // 2
    crop = img[:h2 * 2, :w2 * 2]
    return np.ascontiguousarray(crop.reshape(h2, 2, w2, 2, 4).mean(axis=(1, 3)).astype(np.float32))


def load_environment(path):
    """Decode *path* with Pillow. A missing or unreadable file aborts start-up."""
    if not os.path.isfile(path):
        raise RuntimeError(f"Background image not found: {path}")
    try:
        with Image.open(path) as img:
            pixels = np.array(img.convert('RGBA'))
    except (UnidentifiedImageError, OSError) as e:
        raise RuntimeError(f"Could not decode background image {path}: {e}") from e
    logging.info(f"Loaded background {path} ({pixels.shape[1]}x{pixels.shape[0]})")
    return EnvironmentMap(pixels, name=path)


def checker_environment(width=512, height=256, cells_u=16, cells_v=8):
    """Procedural latitude/longitude grid sky used when no background image is configured."""
    jj, ii = np.meshgrid(np.arange(width), np.arange(height))
    cu = (jj * cells_u) // width
    cv = (ii * cells_v) // height
    checker = ((cu + cv) % 2).astype(np.float32)
    lat = ii / max(height - 1, 1)
    img = np.zeros((height, width, 4), dtype=np.float32)
    img[..., 0] = 0.15 + 0.45 * checker * (1.0 - lat)
    img[..., 1] = 0.15 + 0.35 * checker
    img[..., 2] = 0.25 + 0.45 * checker * lat
    img[..., 3] = 1.0
    return EnvironmentMap(img, name='checker')


# ---------------------------------------------------------------------
# Kernel-side lookup
# ---------------------------------------------------------------------

@njit(cache=True, error_model='numpy')
def _bilinear(tex, u, v, channel):
    """Bilinear fetch with repeat addressing; u, v in [0, 1)."""
    h = tex.shape[0]
    w = tex.shape[1]
    x = u * w - 0.5
    y = v * h - 0.5
    x0f = math.floor(x)
    y0f = math.floor(y)
    fx = x - x0f
    fy = y - y0f
    x0 = int(x0f) % w
    y0 = int(y0f) % h
    x1 = (x0 + 1) % w
    y1 = (y0 + 1) % h
    top = tex[y0, x0, channel] * (1.0 - fx) + tex[y0, x1, channel] * fx
    bottom = tex[y1, x0, channel] * (1.0 - fx) + tex[y1, x1, channel] * fx
    return top * (1.0 - fy) + bottom * fy


@njit(cache=True, error_model='numpy')
def sample_environment(level0, level1, dx, dy, dz, tiles, lod):
    """
    Equirectangular lookup of unit direction d:
        u = atan2(z, x) / 2pi + 0.5,  v = acos(y) / pi
    tiled *tiles* times and wrapped; lod in [0, 1] blends towards the mip level.
    """
    u = math.atan2(dz, dx) * INV_TWO_PI + 0.5
    v = math.acos(min(max(dy, -1.0), 1.0)) * INV_PI
    u = u * tiles
    v = v * tiles
    u = u - math.floor(u)
    v = v - math.floor(v)

    r = _bilinear(level0, u, v, 0)
    g = _bilinear(level0, u, v, 1)
    b = _bilinear(level0, u, v, 2)
    if lod > 0.0:
        r = r * (1.0 - lod) + _bilinear(level1, u, v, 0) * lod
        g = g * (1.0 - lod) + _bilinear(level1, u, v, 1) * lod
        b = b * (1.0 - lod) + _bilinear(level1, u, v, 2) * lod
    return r, g, b
