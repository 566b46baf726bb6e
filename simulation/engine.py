# engine.py
import copy
import math
import time
import logging

import numpy as np
from PIL import Image

from simulation.background import load_environment, checker_environment
from simulation.camera import OrbitCamera, PointerButton
from simulation.kernel import KernelExecutor, status_counts
from simulation.layout import pack_camera_block, pack_disk_block
from simulation.paths import PathBuffer, seed_pixels, extract_paths, build_overlay
from simulation.scene import SceneSetup
from simulation.scheduler import RenderScheduler, CommandChannel
from visualization.plot import project_overlay

START_RADIUS_RS = 15.5
START_ELEVATION = math.pi / 2.2
MIN_RADIUS_RS = 1.1
# fraction of the escape radius the camera may zoom out to
MAX_RADIUS_ESCAPE_FRACTION = 0.95
ZOOM_STEP_RS = 0.4
CANCEL_KEYS = ('escape',)


def compose_frame(image, size):
    """Convert the kernel's RGBA float image to an RGB uint8 frame of *size* = (width, height)."""
    rgb = (np.clip(image[..., :3], 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
    h, w = rgb.shape[:2]
    if (w, h) == tuple(size):
        return rgb
    return np.array(Image.fromarray(rgb).resize(tuple(size), Image.BILINEAR))


def camera_limits(scene):
    """Zoom range and step in metres for *scene*: 1.1 Rs out to just inside the escape radius."""
    rs = scene.rs
    escape_m = scene.escape_radius * scene.length_unit
    return dict(min_radius=MIN_RADIUS_RS * rs,
                max_radius=MAX_RADIUS_ESCAPE_FRACTION * escape_m,
                zoom_speed=ZOOM_STEP_RS * rs)


class BlackHoleEngine:
    """
    Render session: owns the camera, the scene setup and the path buffer.

    The host calls `render()` once per frame. A trace only runs when the
    scheduler is dirty; parameter edits from other threads go through `post`
    and are applied at the start of `render()` while the camera is at rest.
    Input hooks are expected on the render thread and mutate the camera
    directly.
    """
    def __init__(self, surface, scene=None, executor=None, environment=None):
        self.surface = surface
        self.scene = scene if scene is not None else SceneSetup()
        self.executor = executor if executor is not None else KernelExecutor()
        self.environment = environment
        self.camera = OrbitCamera(
            radius=START_RADIUS_RS * self.scene.rs,
            elevation=START_ELEVATION,
            azimuth=0.0,
            fov_deg=self.scene.fov_deg,
            **camera_limits(self.scene),
        )
        self._camera_rs = self.scene.rs
        self.scheduler = RenderScheduler()
        self.commands = CommandChannel()
        self.path_buffer = PathBuffer()
        self.loaded = False

        self.last_trace = None
        self.last_frame = None
        self.seeds = []
        self.paths = []
        self.overlay = None
        self.frames_traced = 0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def load(self):
        """Resolve the environment map and compile the kernel; failures abort with RuntimeError."""
        if self.environment is None:
            if self.scene.background_path:
                self.environment = load_environment(self.scene.background_path)
            else:
                self.environment = checker_environment()
                logging.info("No background image configured, using the checker sky")
        self.executor.compile(self.environment)
        self.loaded = True
        logging.info(f"Session ready: Rs = {self.scene.rs:.4e} m, camera at {self.camera.radius / self.scene.rs:.2f} Rs, "
                     f"trace grid {self.scene.compute_width}x{self.scene.compute_height}")

    def resize(self, width, height):
        """Record the new window size and pass it on to the surface, which reports the frame size."""
        self.scene.update(window_width=width, window_height=height)
        self.surface.resize(width, height)
        self.scheduler.invalidate()

    def invalidate(self):
        self.scheduler.invalidate()

    def post(self, command):
        """Queue `command(engine)` for the render thread and mark the frame dirty."""
        self.commands.post(command)
        self.scheduler.invalidate()

    def update_scene(self, **changes):
        """Validate *changes* now (ValueError on bad input) and apply them before the next trace."""
        copy.deepcopy(self.scene).update(**changes)
        self.post(lambda engine: engine.scene.update(**changes))

    def set_background(self, path):
        """Queue a new background image; decoding happens here so a bad file fails at the caller."""
        env = load_environment(path) if path else checker_environment()
        copy.deepcopy(self.scene).update(background_path=path)

        def apply(engine):
            engine.scene.update(background_path=path)
            engine.environment = env
        self.post(apply)

    def _follow_horizon_scale(self):
        # a mass edit keeps the camera at the same distance in Rs
        if self.scene.rs != self._camera_rs:
            self.camera.rescale(self.scene.rs / self._camera_rs)
            self._camera_rs = self.scene.rs
            logging.info(f"Rs changed to {self.scene.rs:.4e} m, camera kept at {self.camera.radius / self.scene.rs:.2f} Rs")

    # ------------------------------------------------------------------ #
    # Input hooks
    # ------------------------------------------------------------------ #
    def pointer_down(self, button, x, y):
        self.camera.last_x, self.camera.last_y = x, y
        self._button(button, True)

    def pointer_up(self, button, x, y):
        self._button(button, False)

    def _button(self, button, pressed):
        was_moving = self.camera.moving
        self.camera.process_pointer_button(PointerButton(button), pressed)
        if self.camera.moving != was_moving:
            self.scheduler.invalidate()

    def pointer_move(self, x, y):
        self.camera.process_pointer_move(x, y)
        if self.camera.moving:
            self.scheduler.invalidate()

    def scroll(self, delta):
        self.camera.process_scroll(delta)
        self.scheduler.invalidate()

    def key_down(self, key):
        if key is not None and key.lower() in CANCEL_KEYS:
            self.camera.cancel_drag()
            self.scheduler.invalidate()

    # ------------------------------------------------------------------ #
    # Frame
    # ------------------------------------------------------------------ #
    def render(self):
        """
        Run one conditional trace+present cycle.

        Returns True when a frame was traced and presented, False for an idle
        frame (nothing changed since the last trace).
        """
        if not self.loaded:
            raise RuntimeError("BlackHoleEngine.load() must succeed before render()")

        # no edits mid-gesture
        if not self.camera.moving:
            self.commands.drain(self)
            self._follow_horizon_scale()

        if not self.scheduler.should_render():
            self.scheduler.wait_idle()
            return False

        self.surface.make_current()
        moving = self.camera.moving
        params = self.scene.snapshot(moving=moving)
        width, height = params.compute_width, params.compute_height

        self.path_buffer.clear()
        self.seeds = seed_pixels(self.camera, width, height) if params.enable_paths else []

        camera_block = pack_camera_block(
            self.camera.position() / params.length_unit,
            self.camera.build_basis(),
            self.camera.tan_half_fov,
            width / height,
            moving,
        )
        disk_block = pack_disk_block(params.disk_inner, params.disk_outer)

        t0 = time.time()
        result = self.executor.dispatch(camera_block, disk_block, params, self.environment,
                                        self.path_buffer, self.seeds, width, height)
        elapsed = time.time() - t0
        self.last_trace = result
        self.frames_traced += 1
        logging.info(f"Traced {width}x{height} ({params.steps} steps, {'moving' if moving else 'still'}) "
                     f"in {elapsed:.3f}s: {status_counts(result.status)}")

        frame_size = self.surface.pixel_size()
        screen_overlay = None
        if self.seeds:
            self.paths = extract_paths(self.path_buffer, len(self.seeds))
            self.overlay = build_overlay(self.paths)
            screen_overlay = project_overlay(self.overlay, self.camera, width, height,
                                             params.length_unit, frame_size)
            logging.info(f"Captured {len(self.paths)} paths, {len(self.overlay.points)} samples")
        else:
            self.paths = []
            self.overlay = None

        frame = compose_frame(result.image, frame_size)
        self.surface.present(frame, screen_overlay)
        self.last_frame = frame
        self.scheduler.frame_done(self.camera.moving)
        return True
