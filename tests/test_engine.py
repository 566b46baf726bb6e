import numpy as np
import pytest

from simulation.engine import BlackHoleEngine, compose_frame, camera_limits
from simulation.geodesic import ABSORBED, ESCAPED
from simulation.scene import SceneSetup
from simulation.surface import OffscreenSurface


@pytest.fixture
def engine(small_scene, environment):
    surface = OffscreenSurface(small_scene.window_width // 10, small_scene.window_height // 10)
    e = BlackHoleEngine(surface, scene=small_scene, environment=environment)
    e.load()
    return e


def test_render_requires_load(small_scene, environment):
    e = BlackHoleEngine(OffscreenSurface(16, 12), scene=small_scene, environment=environment)
    with pytest.raises(RuntimeError):
        e.render()


def test_load_fails_on_missing_background(tmp_path):
    scene = SceneSetup(compute_width=4, compute_height=4, background_path=str(tmp_path / 'nope.png'))
    e = BlackHoleEngine(OffscreenSurface(4, 4), scene=scene)
    with pytest.raises(RuntimeError, match='not found'):
        e.load()
    assert not e.loaded


def test_camera_starts_at_fifteen_and_a_half_rs(engine):
    assert engine.camera.radius == pytest.approx(15.5 * engine.scene.rs)
    assert engine.camera.elevation == pytest.approx(np.pi / 2.2)
    assert engine.camera.azimuth == 0.0


def test_first_render_presents_frame_of_surface_size(engine):
    assert engine.render()
    assert engine.surface.presented == 1
    assert engine.surface.bound
    assert engine.last_frame.shape == (120, 160, 3)
    assert engine.last_frame.dtype == np.uint8
    assert engine.last_trace.image.shape == (12, 16, 4)


def test_second_render_without_changes_is_idle(engine):
    assert engine.render()
    first = engine.last_frame.copy()
    assert not engine.render()
    assert engine.surface.presented == 1
    assert engine.frames_traced == 1
    assert np.array_equal(engine.last_frame, first)


def test_invalidated_render_is_bit_identical(engine):
    engine.render()
    first = engine.last_frame.copy()
    engine.invalidate()
    assert engine.render()
    assert np.array_equal(engine.last_frame, first)


def test_scroll_triggers_new_trace(engine):
    engine.render()
    engine.scroll(1.0)
    assert engine.render()
    assert engine.frames_traced == 2


def test_posted_commands_apply_in_order_before_trace(engine):
    engine.render()
    order = []
    engine.post(lambda e: order.append('first'))
    engine.post(lambda e: e.scene.update(background_tiles=3))
    engine.post(lambda e: e.scene.update(background_tiles=5))
    engine.post(lambda e: order.append('last'))
    assert engine.render()
    assert order == ['first', 'last']
    assert engine.scene.background_tiles == 5


def test_update_scene_validates_eagerly(engine):
    engine.render()
    with pytest.raises(ValueError):
        engine.update_scene(disk_inner_rs=9.0, disk_outer_rs=3.0)
    assert not engine.commands.pending()
    assert not engine.render()

    engine.update_scene(show_disk=False)
    assert engine.scene.show_disk
    assert engine.render()
    assert not engine.scene.show_disk


def test_commands_wait_while_camera_moves(engine):
    engine.render()
    engine.pointer_down('left', 10, 10)
    engine.update_scene(background_tiles=4)
    assert engine.render()
    # still dragging: the edit is held back and the frame stays dirty
    assert engine.commands.pending()
    assert engine.scene.background_tiles == 2
    assert engine.scheduler.dirty

    engine.pointer_move(30, 10)
    assert engine.camera.azimuth != 0.0
    assert engine.render()
    assert engine.scene.background_tiles == 2

    engine.pointer_up('left', 30, 10)
    assert engine.render()
    assert engine.scene.background_tiles == 4
    assert not engine.scheduler.dirty


def test_moving_frames_use_the_smaller_budget(engine, monkeypatch):
    seen = []
    dispatch = engine.executor.dispatch

    def spy(camera_block, disk_block, params, *args):
        seen.append((params.steps, int(camera_block['moving'])))
        return dispatch(camera_block, disk_block, params, *args)
    monkeypatch.setattr(engine.executor, 'dispatch', spy)

    engine.pointer_down('left', 0, 0)
    engine.render()
    engine.pointer_up('left', 0, 0)
    engine.render()
    assert seen == [(200, 1), (400, 0)]


def test_escape_cancels_drag(engine):
    engine.pointer_down('middle', 0, 0)
    assert engine.camera.moving
    engine.key_down('Escape')
    assert not engine.camera.moving
    engine.key_down('a')
    assert not engine.camera.dragging


def test_right_button_does_not_orbit(engine):
    engine.render()
    engine.pointer_down('right', 0, 0)
    engine.pointer_move(100, 100)
    assert engine.camera.azimuth == 0.0
    assert not engine.render()


def test_resize_updates_scene_and_invalidates(engine):
    engine.render()
    engine.resize(200, 100)
    assert (engine.scene.window_width, engine.scene.window_height) == (200, 100)
    assert engine.surface.pixel_size() == (200, 100)
    assert engine.render()
    assert engine.last_frame.shape == (100, 200, 3)


def test_path_capture_builds_overlay(engine):
    engine.update_scene(enable_paths=True)
    engine.render()
    assert 1 <= len(engine.seeds) <= 5
    assert len(engine.paths) == len(engine.seeds)
    assert engine.overlay is not None
    assert all(len(s) >= 4 for s in engine.overlay.strips)
    assert engine.overlay.points.shape[1] == 3
    # the surface receives the overlay in frame pixels
    screen = engine.surface.overlay
    assert screen.points.shape[1] == 2


def test_paths_disabled_leaves_no_overlay(engine):
    engine.render()
    assert engine.seeds == []
    assert engine.overlay is None
    assert engine.surface.overlay is None


def test_compose_frame_scales_and_clips():
    image = np.zeros((2, 2, 4), dtype=np.float32)
    image[0, 0, :3] = 2.0
    image[1, 1, :3] = -1.0
    frame = compose_frame(image, (2, 2))
    assert frame.dtype == np.uint8
    assert frame[0, 0].tolist() == [255, 255, 255]
    assert frame[1, 1].tolist() == [0, 0, 0]
    assert compose_frame(image, (8, 6)).shape == (6, 8, 3)


def test_set_background_swaps_environment(engine, tmp_path):
    from PIL import Image
    path = tmp_path / 'sky.png'
    Image.fromarray(np.full((8, 16, 3), 200, dtype=np.uint8)).save(path)
    engine.render()
    old_env = engine.environment
    engine.set_background(str(path))
    assert engine.environment is old_env
    assert engine.render()
    assert engine.environment is not old_env
    assert engine.scene.background_path == str(path)


def test_set_background_rejects_missing_file(engine, tmp_path):
    with pytest.raises(RuntimeError):
        engine.set_background(str(tmp_path / 'missing.png'))
    assert not engine.commands.pending()


def test_matplotlib_surface_presents_frame_and_overlay():
    from simulation.paths import PathOverlay
    from simulation.surface import MatplotlibSurface
    surface = MatplotlibSurface(40, 30)
    assert surface.pixel_size() == (40, 30)
    surface.make_current()
    frame = np.full((30, 40, 3), 90, dtype=np.uint8)
    overlay = PathOverlay(np.array([[5.0, 5.0]]), [np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [3.0, 3.0]])])
    surface.present(frame, overlay)
    assert len(surface.overlay_artists) == 2
    surface.present(frame, None)
    assert surface.overlay_artists == []
    assert np.array_equal(surface.image.get_array(), frame)


@pytest.mark.parametrize('mass', [1e35, 8.54e36, 1e39])
def test_any_mass_starts_between_horizon_and_escape_radius(environment, mass):
    scene = SceneSetup(mass=mass, compute_width=32, compute_height=24)
    e = BlackHoleEngine(OffscreenSurface(32, 24), scene=scene, environment=environment)
    assert e.camera.radius / scene.rs == pytest.approx(15.5)
    assert scene.rs < e.camera.min_radius < e.camera.radius < e.camera.max_radius
    assert e.camera.max_radius < scene.escape_radius * scene.length_unit

    e.load()
    assert e.render()
    status = e.last_trace.status
    assert status[12, 16] == ABSORBED
    for y, x in [(0, 0), (0, 31), (23, 0), (23, 31)]:
        assert status[y, x] == ESCAPED


def test_zoom_stays_inside_escape_radius_for_light_black_hole(environment):
    scene = SceneSetup(mass=1e35, compute_width=4, compute_height=4)
    e = BlackHoleEngine(OffscreenSurface(4, 4), scene=scene, environment=environment)
    e.scroll(-1e6)
    assert e.camera.radius == pytest.approx(0.95 * 40.0 * scene.rs)
    e.scroll(1e6)
    assert e.camera.radius == pytest.approx(1.1 * scene.rs)


def test_mass_edit_keeps_camera_distance_in_rs(engine):
    engine.scroll(2.0)
    r_rs = engine.camera.radius / engine.scene.rs
    engine.render()

    engine.update_scene(mass=engine.scene.mass * 100)
    assert engine.camera.radius / engine.scene.rs != pytest.approx(r_rs)
    assert engine.render()
    assert engine.camera.radius / engine.scene.rs == pytest.approx(r_rs)
    limits = camera_limits(engine.scene)
    assert engine.camera.min_radius == pytest.approx(limits['min_radius'])
    assert engine.camera.max_radius == pytest.approx(limits['max_radius'])
    assert engine.camera.zoom_speed == pytest.approx(limits['zoom_speed'])
