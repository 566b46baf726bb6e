#camera.py
import enum
import math

import numpy as np

# Sign applied to the vertical image axis when building a ray. The trace kernel
# imports this constant, so host-side pixel mapping and the kernel always agree.
V_SIGN = 1.0

ELEVATION_EPS = 0.01
BEHIND_EPS = 1e-6

WORLD_UP = np.array([0.0, 1.0, 0.0])
FALLBACK_AXIS = np.array([0.0, 0.0, 1.0])


class PointerButton(enum.Enum):
    LEFT = 'left'
    MIDDLE = 'middle'
    RIGHT = 'right'


def _normalize(v, fallback):
    n = np.linalg.norm(v)
    if not np.isfinite(n) or n < 1e-12:
        return fallback.copy()
    return v / n


class OrbitCamera:
    """
    Pinhole camera orbiting the black hole at the world origin.

    radius: distance to the target in metres, clamped to [min_radius, max_radius]
    min_radius, max_radius, zoom_speed: metres; the defaults suit Sgr A* (Rs ~ 1.27e10 m),
        i.e. 1.1 Rs to 38 Rs. Other masses should use `set_radius_limits` or `rescale`.
    azimuth, elevation: orbit angles in radians; elevation is measured from +y
        and kept inside (ELEVATION_EPS, pi - ELEVATION_EPS)
    fov: vertical field of view in radians (fixed)
    """
    def __init__(self, radius=2.0e11, elevation=math.pi / 2.0, azimuth=0.0, fov_deg=60.0,
                 min_radius=1.4e10, max_radius=4.8e11, orbit_speed=0.005, zoom_speed=5e9):
        self.target = np.zeros(3)
        self.radius = float(radius)
        self.set_radius_limits(min_radius, max_radius, zoom_speed)
        self.azimuth = azimuth
        self.elevation = float(np.clip(elevation, ELEVATION_EPS, math.pi - ELEVATION_EPS))
        self.orbit_speed = orbit_speed
        self.fov = math.radians(fov_deg)
        self.tan_half_fov = math.tan(self.fov / 2.0)
        self.dragging = False
        self.panning = False
        self.moving = False
        self.last_x = 0.0
        self.last_y = 0.0

    def set_radius_limits(self, min_radius, max_radius, zoom_speed):
        """Replace the zoom range and step, re-clamping the current radius."""
        if not 0 < min_radius < max_radius:
            raise ValueError(f"Camera radius limits must satisfy 0 < min < max, got {min_radius}, {max_radius}")
        self.min_radius = float(min_radius)
        self.max_radius = float(max_radius)
        self.zoom_speed = float(zoom_speed)
        self.radius = float(np.clip(self.radius, self.min_radius, self.max_radius))

    def rescale(self, factor):
        """Scale radius, limits and zoom step together, e.g. when the horizon size changes."""
        self.radius *= factor
        self.set_radius_limits(self.min_radius * factor, self.max_radius * factor, self.zoom_speed * factor)

    def _update(self):
        self.target = np.zeros(3)
        self.moving = self.dragging or self.panning

    # ------------------------------------------------------------------ #
    # Input
    # ------------------------------------------------------------------ #
    def process_pointer_button(self, button, pressed):
        if button not in (PointerButton.LEFT, PointerButton.MIDDLE):
            return
        self.dragging = bool(pressed)
        self.panning = False
        self._update()

    def process_pointer_move(self, x, y):
        dx = x - self.last_x
        dy = y - self.last_y
        if self.dragging and not self.panning:
            self.azimuth += dx * self.orbit_speed
            self.elevation -= dy * self.orbit_speed
            self.elevation = float(np.clip(self.elevation, ELEVATION_EPS, math.pi - ELEVATION_EPS))
        self.last_x, self.last_y = x, y
        self._update()

    def process_scroll(self, delta):
        self.radius -= delta * self.zoom_speed
        self.radius = float(np.clip(self.radius, self.min_radius, self.max_radius))
        self._update()

    def cancel_drag(self):
        self.dragging = self.panning = False
        self._update()

    # ------------------------------------------------------------------ #
    # Geometry (recomputed on every call, nothing is cached)
    # ------------------------------------------------------------------ #
    def position(self):
        e = float(np.clip(self.elevation, ELEVATION_EPS, math.pi - ELEVATION_EPS))
        return np.array([
            self.radius * math.sin(e) * math.cos(self.azimuth),
            self.radius * math.cos(e),
            self.radius * math.sin(e) * math.sin(self.azimuth),
        ])

    def build_basis(self):
        """Return the orthonormal (forward, right, up) ray-generation basis."""
        fwd = _normalize(self.target - self.position(), FALLBACK_AXIS)
        up_guess = WORLD_UP
        if abs(np.dot(fwd, up_guess)) > 0.999:
            up_guess = FALLBACK_AXIS
        right = _normalize(np.cross(up_guess, fwd), np.array([1.0, 0.0, 0.0]))
        up = _normalize(np.cross(fwd, right), WORLD_UP)
        return fwd, right, up

    def pixel_to_world_direction(self, x, y, width, height):
        fwd, right, up = self.build_basis()
        aspect = width / max(1, height)
        u = (2.0 * ((x + 0.5) / width) - 1.0) * aspect * self.tan_half_fov
        v = (1.0 - 2.0 * ((y + 0.5) / height)) * self.tan_half_fov
        return _normalize(u * right + V_SIGN * v * up + fwd, fwd)

    def world_direction_to_pixel(self, direction, width, height):
        """
        Invert `pixel_to_world_direction`.

        Returns (x, y, visible). Directions at or behind the image plane give
        (-1, -1, False); otherwise visible tells whether the rounded pixel lies
        inside the frame.
        """
        fwd, right, up = self.build_basis()
        aspect = width / max(1, height)
        d = _normalize(np.asarray(direction, dtype=np.float64), fwd)
        c = float(np.dot(d, fwd))
        if c <= BEHIND_EPS:
            return -1, -1, False
        u = float(np.dot(d, right)) / c
        v = (float(np.dot(d, up)) / c) / V_SIGN
        x_float = ((u / (aspect * self.tan_half_fov) + 1.0) * 0.5) * width - 0.5
        y_float = ((1.0 - v / self.tan_half_fov) * 0.5) * height - 0.5
        xi = int(round(x_float))
        yi = int(round(y_float))
        return xi, yi, (0 <= xi < width and 0 <= yi < height)
