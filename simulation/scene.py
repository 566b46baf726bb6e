#scene.py
import enum
import logging
from typing import NamedTuple

import numpy as np


class HorizonHandling(enum.IntEnum):
    """How rays reaching the horizon are treated. Only BLACK stops a ray today."""
    BLACK = 0
    REFLECTIVE = 1
    TRANSPARENT = 2


class SceneParameters(NamedTuple):
    """Immutable snapshot of the scene consumed by one trace dispatch (length units)."""
    rs: float
    length_unit: float
    escape_radius: float
    affine_step: float
    steps: int
    disk_inner: float
    disk_outer: float
    horizon_handling: HorizonHandling
    background_tiles: int
    path_stride: int
    enable_paths: bool
    compute_width: int
    compute_height: int
    moving: bool


MAX_COMPUTE_SIZE = 2000
MAX_BACKGROUND_TILES = 8
_INT_FIELDS = ('window_width', 'window_height', 'compute_width', 'compute_height',
               'integration_steps_still', 'integration_steps_moving',
               'background_tiles', 'path_stride')


class SceneSetup:
    """
    User-editable setup of the Schwarzschild scene.

    Physical constants are SI; everything handed to the kernel is expressed in
    the scaled length unit (Rs * 1e-3), so the scaled Schwarzschild radius is 1000.
    All mutations go through `update`, which validates before applying.
    """
    _FIELDS = (
        'c_light', 'g_newton', 'mass',
        'window_width', 'window_height', 'compute_width', 'compute_height',
        'integration_steps_still', 'integration_steps_moving',
        'show_disk', 'disk_inner_rs', 'disk_outer_rs',
        'horizon_handling', 'background_path', 'background_tiles',
        'enable_paths', 'path_stride', 'fov_deg',
    )

    def __init__(self, **overrides):
        self.c_light = 299_792_458.0
        self.g_newton = 6.67430e-11
        self.mass = 8.54e36  # Sgr A*

        self.window_width = 1600
        self.window_height = 1200
        self.compute_width = 320
        self.compute_height = 240

        self.integration_steps_still = 8000
        self.integration_steps_moving = 4000

        self.show_disk = True
        self.disk_inner_rs = 2.7
        self.disk_outer_rs = 4.2
        self.horizon_handling = HorizonHandling.BLACK

        self.background_path = None
        self.background_tiles = 2

        self.enable_paths = False
        self.path_stride = 4
        self.fov_deg = 60.0

        self._derive()
        if overrides:
            self.update(**overrides)

    def _derive(self):
        self.rs = 2.0 * self.g_newton * self.mass / (self.c_light * self.c_light)
        self.length_unit = self.rs * 1e-3
        self.rs_scaled = self.rs / self.length_unit
        self.affine_step = 0.003 * self.rs_scaled
        self.escape_radius = 40.0 * self.rs_scaled

    def update(self, **changes):
        """Validate and apply *changes*; raises ValueError and leaves the setup untouched on bad input."""
        unknown = set(changes) - set(self._FIELDS)
        if unknown:
            raise ValueError(f"Unknown scene parameter(s): {', '.join(sorted(unknown))}")
        merged = {name: getattr(self, name) for name in self._FIELDS}
        merged.update(changes)
        merged['horizon_handling'] = _coerce_horizon(merged['horizon_handling'])
        _validate(merged)
        for name in _INT_FIELDS:
            merged[name] = int(merged[name])
        for name, value in merged.items():
            setattr(self, name, value)
        self._derive()
        if changes:
            logging.debug(f"Scene updated: {changes}")

    def disk_radii(self):
        """Disk inner/outer radii in length units; (0, 0) when the disk is hidden."""
        if not self.show_disk:
            return 0.0, 0.0
        return (self.disk_inner_rs * self.rs / self.length_unit,
                self.disk_outer_rs * self.rs / self.length_unit)

    @property
    def tan_half_fov(self):
        return float(np.tan(np.radians(self.fov_deg) / 2.0))

    def snapshot(self, moving=False):
        disk_inner, disk_outer = self.disk_radii()
        return SceneParameters(
            rs=self.rs_scaled,
            length_unit=self.length_unit,
            escape_radius=self.escape_radius,
            affine_step=self.affine_step,
            steps=self.integration_steps_moving if moving else self.integration_steps_still,
            disk_inner=disk_inner,
            disk_outer=disk_outer,
            horizon_handling=self.horizon_handling,
            background_tiles=self.background_tiles,
            path_stride=self.path_stride,
            enable_paths=self.enable_paths,
            compute_width=self.compute_width,
            compute_height=self.compute_height,
            moving=moving,
        )


def _coerce_horizon(value):
    if isinstance(value, str):
        try:
            return HorizonHandling[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown horizon handling mode: {value!r}") from None
    try:
        return HorizonHandling(value)
    except ValueError:
        raise ValueError(f"Unknown horizon handling mode: {value!r}") from None


def _validate(p):
    for name in ('c_light', 'g_newton', 'mass'):
        if not p[name] > 0:
            raise ValueError(f"{name} must be positive, got {p[name]}")
    for name in ('window_width', 'window_height'):
        if int(p[name]) < 1:
            raise ValueError(f"{name} must be at least 1, got {p[name]}")
    for name in ('compute_width', 'compute_height'):
        if not 1 <= int(p[name]) <= MAX_COMPUTE_SIZE:
            raise ValueError(f"{name} must be in [1, {MAX_COMPUTE_SIZE}], got {p[name]}")
    for name in ('integration_steps_still', 'integration_steps_moving', 'path_stride'):
        if int(p[name]) < 1:
            raise ValueError(f"{name} must be positive, got {p[name]}")
    if p['disk_inner_rs'] <= 0 or p['disk_outer_rs'] <= 0:
        raise ValueError("Disk radii must be positive")
    if p['disk_inner_rs'] >= p['disk_outer_rs']:
        raise ValueError(
            f"Disk inner radius ({p['disk_inner_rs']} Rs) must be smaller than the outer radius ({p['disk_outer_rs']} Rs)")
    if not 1 <= int(p['background_tiles']) <= MAX_BACKGROUND_TILES:
        raise ValueError(f"Number of tiles must be int from 1 to {MAX_BACKGROUND_TILES}, got {p['background_tiles']}")
    if not 0 < p['fov_deg'] < 180:
        raise ValueError(f"Field of view must be in (0, 180) degrees, got {p['fov_deg']}")
