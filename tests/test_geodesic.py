import math

import numpy as np
import pytest

from simulation.geodesic import (
    ABSORBED, ESCAPED, DIVERGED, BUDGET_EXHAUSTED,
    apply_epsilon, local_step, init_state, geodesic_rhs, crosses_disk, integrate_ray,
)

RS = 1.0
BASE_STEP = 0.05


def no_paths(paths=1, samples=1):
    return np.zeros((paths, samples, 4), dtype=np.float32), np.zeros(paths, dtype=np.int32)


def trace(p, d, rs=RS, escape_r=50.0, max_steps=1000, disk=(0.0, 0.0), path_id=-1, stride=1, buffers=None):
    points, counts = buffers if buffers is not None else no_paths()
    return integrate_ray(p[0], p[1], p[2], d[0], d[1], d[2], rs, BASE_STEP, escape_r, max_steps,
                         disk[0], disk[1], path_id, stride, points, counts)


def test_apply_epsilon_keeps_sign():
    assert apply_epsilon(0.0, 1e-9) == 1e-9
    assert apply_epsilon(1e-12, 1e-9) == 1e-9
    assert apply_epsilon(-1e-12, 1e-9) == -1e-9
    assert apply_epsilon(-3.0, 1e-9) == -3.0
    assert apply_epsilon(5.0, 1e-9) == 5.0


def test_local_step_is_finer_near_horizon():
    near = local_step(1.2, RS, BASE_STEP)
    photon_sphere = local_step(1.6, RS, BASE_STEP)
    inner = local_step(2.5, RS, BASE_STEP)
    far = local_step(10.0, RS, BASE_STEP)
    assert near < photon_sphere < inner < far
    assert far == pytest.approx(4.0 * BASE_STEP)


def test_init_state_radial_ray():
    s, E = init_state(10.0, 0.0, 0.0, 1.0, 0.0, 0.0, RS)
    r, ct, st, cp, sp, rp, tp, pp = s
    assert r == pytest.approx(10.0)
    assert ct == pytest.approx(0.0, abs=1e-12)
    assert st == pytest.approx(1.0)
    assert rp == pytest.approx(1.0)
    assert tp == pytest.approx(0.0, abs=1e-12)
    assert pp == pytest.approx(0.0, abs=1e-12)
    # radial null ray: E = |dr/dl|
    assert E == pytest.approx(1.0)


def test_radial_null_ray_has_no_radial_acceleration():
    s, E = init_state(5.0, 0.0, 0.0, -1.0, 0.0, 0.0, RS)
    k = geodesic_rhs(s, E, RS)
    assert k[5] == pytest.approx(0.0, abs=1e-9)


def test_tangential_ray_is_pulled_inward_inside_photon_sphere():
    # below r = 1.5 Rs gravity beats the centrifugal term
    s, E = init_state(1.3, 0.0, 0.0, 0.0, 1.0, 0.0, RS)
    assert geodesic_rhs(s, E, RS)[5] < 0.0
    s, E = init_state(10.0, 0.0, 0.0, 0.0, 1.0, 0.0, RS)
    assert geodesic_rhs(s, E, RS)[5] > 0.0


def test_outgoing_ray_far_from_horizon_escapes():
    status, steps, disk_hits, sampled, ex, ey, ez = trace((10.0, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert status == ESCAPED
    # 40 length units at 0.2 per step
    assert steps < 300
    assert sampled
    assert ex == pytest.approx(1.0, abs=1e-6)


def test_ingoing_ray_near_horizon_is_absorbed():
    status, steps, disk_hits, sampled, ex, ey, ez = trace((1.01, 0.0, 0.0), (-1.0, 0.0, 0.0))
    assert status == ABSORBED
    assert steps < 10


def test_ray_aimed_at_hole_from_far_is_absorbed():
    status, *_ = trace((20.0, 0.0, 0.0), (-1.0, 0.0, 0.0), max_steps=5000)
    assert status == ABSORBED


def test_budget_exhausted_without_classification():
    status, steps, *_ = trace((10.0, 0.0, 0.0), (1.0, 0.0, 0.0), escape_r=1e6, max_steps=10)
    assert status == BUDGET_EXHAUSTED
    assert steps == 10


def test_non_finite_start_diverges():
    status, steps, *_ = trace((math.nan, 0.0, 0.0), (1.0, 0.0, 0.0))
    assert status == DIVERGED
    assert steps == 1


def test_crosses_disk_strict_straddle():
    assert crosses_disk(3.0, 1.0, 0.0, 3.0, -1.0, 0.0, 2.0, 4.0)
    # outside the annulus
    assert not crosses_disk(3.0, 1.0, 0.0, 3.0, -1.0, 0.0, 4.0, 5.0)
    assert not crosses_disk(1.0, 1.0, 0.0, 1.0, -1.0, 0.0, 2.0, 4.0)
    # same side of the plane
    assert not crosses_disk(3.0, 1.0, 0.0, 3.0, 0.5, 0.0, 2.0, 4.0)
    # endpoint exactly on the plane is a graze, not a crossing
    assert not crosses_disk(3.0, 0.0, 0.0, 3.0, -1.0, 0.0, 2.0, 4.0)
    # planar radius is measured in xz
    assert crosses_disk(0.0, 1.0, 3.0, 0.0, -1.0, 3.0, 2.0, 4.0)


def test_disk_crossing_is_counted_once_and_not_terminal():
    # weak field so the ray stays close to the line x = 3, z = 0
    rs = 0.01
    status, steps, disk_hits, *_ = trace((3.0, 2.05, 0.0), (0.0, -1.0, 0.0), rs=rs, escape_r=20.0,
                                          disk=(2.5, 3.5))
    assert disk_hits == 1
    assert status == ESCAPED


def test_disk_outside_annulus_or_hidden_gives_no_hit():
    rs = 0.01
    _, _, hits, *_ = trace((3.0, 2.05, 0.0), (0.0, -1.0, 0.0), rs=rs, escape_r=20.0, disk=(4.0, 5.0))
    assert hits == 0
    _, _, hits, *_ = trace((3.0, 2.05, 0.0), (0.0, -1.0, 0.0), rs=rs, escape_r=20.0, disk=(0.0, 0.0))
    assert hits == 0


def test_ray_that_never_reaches_the_plane_has_no_hit():
    rs = 0.01
    _, _, hits, *_ = trace((3.0, 2.05, 0.0), (0.0, 1.0, 0.0), rs=rs, escape_r=20.0, disk=(2.5, 3.5))
    assert hits == 0


def test_path_recording_stride():
    buffers = no_paths(1, 100)
    trace((10.0, 0.0, 0.0), (1.0, 0.0, 0.0), escape_r=1e6, max_steps=10, path_id=0, stride=2, buffers=buffers)
    points, counts = buffers
    # steps 0, 2, 4, 6, 8
    assert counts[0] == 5
    assert np.all(points[0, :5, 3] == 1.0)
    assert np.all(np.diff(points[0, :5, 0]) > 0)


def test_path_recording_truncates_silently():
    buffers = no_paths(1, 3)
    status, *_ = trace((10.0, 0.0, 0.0), (1.0, 0.0, 0.0), path_id=0, buffers=buffers)
    assert status == ESCAPED
    assert buffers[1][0] == 3


def test_path_id_out_of_range_is_dropped():
    buffers = no_paths(2, 10)
    trace((10.0, 0.0, 0.0), (1.0, 0.0, 0.0), path_id=2, buffers=buffers)
    assert buffers[1].tolist() == [0, 0]
