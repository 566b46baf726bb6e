# geodesic.py
"""
Schwarzschild null-geodesic integrator.

A ray's state is the 8-tuple

    (r, cos(theta), sin(theta), cos(phi), sin(phi), dr/dl, dtheta/dl, dphi/dl)

plus the conserved E = f * dt/dl fixed at creation (f = 1 - Rs/r). Angles are
carried as cos/sin pairs and advanced through d(cos)/dl = -sin * dangle/dl,
d(sin)/dl = cos * dangle/dl, so no trigonometric function is evaluated inside
the step. Lengths are in the scene's scaled unit (Rs_scaled = 1000 by default).

Every function here is plain numba nopython code without allocation, so it
runs unchanged inside the CPU `prange` kernel and as a CUDA device function.
"""
import math

from numba import njit

# Per-ray termination state
INTEGRATING = 0
ABSORBED = 1
ESCAPED = 2
DIVERGED = 3
BUDGET_EXHAUSTED = 4

STATUS_NAMES = {
    INTEGRATING: 'integrating',
    ABSORBED: 'absorbed',
    ESCAPED: 'escaped',
    DIVERGED: 'diverged',
    BUDGET_EXHAUSTED: 'budget_exhausted',
}

# Guards against r -> 0, sin(theta) -> 0 and f -> 0
EPS_R = 1e-9
EPS_SIN = 1e-9
EPS_F = 1e-9
# Grazing tolerance of the disk-plane crossing test
DISK_EPS = 1e-6

# Adaptive step: (r / Rs threshold, scale), checked in order; beyond the last -> FAR_STEP_SCALE
NEAR_HORIZON_SCALE = 0.25
PHOTON_SPHERE_SCALE = 0.5
INNER_SCALE = 1.0
FAR_STEP_SCALE = 4.0


@njit(cache=True, error_model='numpy')
def apply_epsilon(f, eps):
    """Replace |f| < eps by eps with the sign of f (+eps at exactly zero)."""
    if f == 0.0:
        return eps
    if abs(f) < eps:
        return eps if f > 0.0 else -eps
    return f


@njit(cache=True, error_model='numpy')
def is_bad(x):
    return math.isnan(x) or math.isinf(x)


@njit(cache=True, error_model='numpy')
def to_cartesian(r, ct, st, cp, sp):
    return r * st * cp, r * st * sp, r * ct


@njit(cache=True, error_model='numpy')
def local_step(r, rs, base_step):
    """Affine step chosen from r in units of Rs: fine near the horizon, coarse far away."""
    x = r / rs
    if x < 1.5:
        scale = NEAR_HORIZON_SCALE
    elif x < 1.8:
        scale = PHOTON_SPHERE_SCALE
    elif x < 3.0:
        scale = INNER_SCALE
    else:
        scale = FAR_STEP_SCALE
    return base_step * scale


@njit(cache=True, error_model='numpy')
def geodesic_rhs(s, E, rs):
    r, ct, st, cp, sp, rp, tp, pp = s
    r_safe = apply_epsilon(r, EPS_R)
    st_safe = apply_epsilon(st, EPS_SIN)
    f = apply_epsilon(1.0 - rs / r_safe, EPS_F)
    dt_dl = E / f

    rpp = (-(rs / (2.0 * r_safe * r_safe)) * f * dt_dl * dt_dl
           + (rs / (2.0 * r_safe * r_safe * f)) * rp * rp
           + r * f * (tp * tp + st * st * pp * pp))
    tpp = -2.0 * rp * tp / r_safe + st * ct * pp * pp
    ppp = -2.0 * rp * pp / r_safe - 2.0 * ct / st_safe * tp * pp

    return (rp, -st * tp, ct * tp, -sp * pp, cp * pp, rpp, tpp, ppp)


@njit(cache=True, error_model='numpy')
def _advance(s, k, h):
    return (s[0] + h * k[0], s[1] + h * k[1], s[2] + h * k[2], s[3] + h * k[3],
            s[4] + h * k[4], s[5] + h * k[5], s[6] + h * k[6], s[7] + h * k[7])


@njit(cache=True, error_model='numpy')
def rk4_step(s, E, rs, h):
    """One classic RK4 step of size h along the affine parameter."""
    half = 0.5 * h
    k1 = geodesic_rhs(s, E, rs)
    k2 = geodesic_rhs(_advance(s, k1, half), E, rs)
    k3 = geodesic_rhs(_advance(s, k2, half), E, rs)
    k4 = geodesic_rhs(_advance(s, k3, h), E, rs)
    sixth = h / 6.0
    return (
        s[0] + sixth * (k1[0] + 2.0 * k2[0] + 2.0 * k3[0] + k4[0]),
        s[1] + sixth * (k1[1] + 2.0 * k2[1] + 2.0 * k3[1] + k4[1]),
        s[2] + sixth * (k1[2] + 2.0 * k2[2] + 2.0 * k3[2] + k4[2]),
        s[3] + sixth * (k1[3] + 2.0 * k2[3] + 2.0 * k3[3] + k4[3]),
        s[4] + sixth * (k1[4] + 2.0 * k2[4] + 2.0 * k3[4] + k4[4]),
        s[5] + sixth * (k1[5] + 2.0 * k2[5] + 2.0 * k3[5] + k4[5]),
        s[6] + sixth * (k1[6] + 2.0 * k2[6] + 2.0 * k3[6] + k4[6]),
        s[7] + sixth * (k1[7] + 2.0 * k2[7] + 2.0 * k3[7] + k4[7]),
    )


@njit(cache=True, error_model='numpy')
def init_state(px, py, pz, dx, dy, dz, rs):
    """
    Build (state, E) for a ray leaving Cartesian position p with direction d.

    dt/dl follows from the null condition
        -f (dt/dl)^2 + (dr/dl)^2 / f + r^2 (dtheta^2 + sin^2 theta dphi^2) = 0
    and E = f * dt/dl is conserved along the ray.
    """
    r = math.sqrt(px * px + py * py + pz * pz)
    r_safe = apply_epsilon(r, EPS_R)
    ct = min(max(pz / r_safe, -1.0), 1.0)
    st = math.sqrt(max(1.0 - ct * ct, 0.0))

    rxy = max(math.sqrt(px * px + py * py), 1e-12)
    cp = px / rxy
    sp = py / rxy

    rp = st * cp * dx + st * sp * dy + ct * dz
    tp = (ct * cp * dx + ct * sp * dy - st * dz) / r_safe
    pp = (-sp * dx + cp * dy) / apply_epsilon(r * st, EPS_SIN)

    f = apply_epsilon(1.0 - rs / r_safe, EPS_F)
    angular = r * r * (tp * tp + st * st * pp * pp)
    dt_dl = math.sqrt(max(rp * rp / (f * f) + angular / f, 0.0))
    E = f * dt_dl
    return (r, ct, st, cp, sp, rp, tp, pp), E


@njit(cache=True, error_model='numpy')
def crosses_disk(ax, ay, az, bx, by, bz, r1, r2):
    """True when segment a->b strictly straddles y = 0 inside the annulus r1 < rho < r2."""
    denom = ay - by
    if abs(denom) < DISK_EPS:
        return False
    if ay * by > 0.0:
        return False
    t = ay / denom
    # endpoint grazes produce seam flicker between neighbouring rays
    if t <= DISK_EPS or t >= 1.0 - DISK_EPS:
        return False
    x = ax + t * (bx - ax)
    z = az + t * (bz - az)
    rho = math.sqrt(x * x + z * z)
    return rho >= r1 + DISK_EPS and rho <= r2 - DISK_EPS


@njit(cache=True, error_model='numpy')
def integrate_ray(px, py, pz, dx, dy, dz, rs, base_step, escape_r, max_steps,
                  disk_r1, disk_r2, path_id, path_stride, path_points, path_counts):
    """
    Integrate one ray until it terminates or the step budget runs out.

    Guards are evaluated after every step in the order
    diverged -> disk crossing (non-terminal) -> absorbed -> escaped.
    Rays with path_id >= 0 append their position to path_points[path_id]
    every path_stride steps; writes past the buffer bounds are dropped.

    Returns (status, steps, disk_hits, sampled, ex, ey, ez) where (ex, ey, ez)
    is the unit direction of the last environment lookup.
    """
    s, E = init_state(px, py, pz, dx, dy, dz, rs)
    prev_x, prev_y, prev_z = to_cartesian(s[0], s[1], s[2], s[3], s[4])

    status = INTEGRATING
    steps = 0
    disk_hits = 0
    sampled = False
    ex = 0.0
    ey = 0.0
    ez = 0.0
    record = path_id >= 0 and path_id < path_counts.shape[0]

    for i in range(max_steps):
        h = local_step(s[0], rs, base_step)
        s = rk4_step(s, E, rs, h)
        steps += 1
        cx, cy, cz = to_cartesian(s[0], s[1], s[2], s[3], s[4])

        if record and i % path_stride == 0:
            idx = path_counts[path_id]
            if idx < path_points.shape[1]:
                path_points[path_id, idx, 0] = cx
                path_points[path_id, idx, 1] = cy
                path_points[path_id, idx, 2] = cz
                path_points[path_id, idx, 3] = 1.0
                path_counts[path_id] = idx + 1

        if is_bad(s[0]) or is_bad(cx) or is_bad(cy) or is_bad(cz):
            status = DIVERGED
            break

        # translucent: the ray keeps going after a disk hit
        if disk_r1 > 0.0 and crosses_disk(prev_x, prev_y, prev_z, cx, cy, cz, disk_r1, disk_r2):
            disk_hits += 1
        prev_x, prev_y, prev_z = cx, cy, cz

        if abs(s[0]) < rs:
            status = ABSORBED
            break

        # only the last lookup is kept, so store its direction and sample once at the end
        n = math.sqrt(cx * cx + cy * cy + cz * cz)
        if n > 0.0:
            ex = cx / n
            ey = cy / n
            ez = cz / n
            sampled = True

        if s[0] > escape_r:
            status = ESCAPED
            break

    if status == INTEGRATING:
        status = BUDGET_EXHAUSTED
    return status, steps, disk_hits, sampled, ex, ey, ez
