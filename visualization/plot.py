import os
import logging

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.lines import Line2D
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401  registers the 3d projection

from simulation.paths import PathOverlay


def project_paths(points, camera, width, height, length_unit=1.0, frame_size=None):
    """
    Map world points (kernel length units) to pixel coordinates of the width x height trace grid.
    With *frame_size* = (fw, fh) the coordinates are rescaled to a presented frame of that size.

    Uses the camera's inverse pinhole mapping. Points behind the camera or
    outside the frame come back as NaN rows, which matplotlib renders as gaps
    in a line.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    cam_pos = camera.position() / length_unit
    out = np.full((len(points), 2), np.nan)
    for i, p in enumerate(points):
        x, y, visible = camera.world_direction_to_pixel(p - cam_pos, width, height)
        if visible:
            out[i] = (x, y)
    if frame_size is not None:
        fw, fh = frame_size
        out[:, 0] = (out[:, 0] + 0.5) * fw / width - 0.5
        out[:, 1] = (out[:, 1] + 0.5) * fh / height - 0.5
    return out


def project_overlay(overlay, camera, width, height, length_unit=1.0, frame_size=None):
    """Screen-space copy of a world-space PathOverlay; hidden points are dropped from `points`."""
    pts = project_paths(overlay.points, camera, width, height, length_unit, frame_size)
    pts = pts[np.all(np.isfinite(pts), axis=1)]
    strips = [project_paths(s, camera, width, height, length_unit, frame_size) for s in overlay.strips]
    return PathOverlay(pts, strips)


def draw_path_overlay(ax, overlay, color='orange', point_color='lime'):
    """Draw a screen-space overlay on an image axes: point sprites for every sample, lines for strips."""
    artists = []
    for strip in overlay.strips:
        line, = ax.plot(strip[:, 0], strip[:, 1], color=color, lw=1, alpha=0.9)
        artists.append(line)
    if len(overlay.points):
        artists.append(ax.scatter(overlay.points[:, 0], overlay.points[:, 1], color=point_color, s=4, zorder=5))
    return artists


def save_overlay_image(frame, overlay, out_path):
    """Save *frame* (HxWx3 uint8) with a screen-space overlay drawn on top."""
    h, w = frame.shape[:2]
    fig = plt.figure(figsize=(w / 100.0, h / 100.0), dpi=100)
    ax = fig.add_axes([0, 0, 1, 1])
    ax.imshow(frame)
    draw_path_overlay(ax, overlay)
    ax.set_xlim(-0.5, w - 0.5)
    ax.set_ylim(h - 0.5, -0.5)
    ax.axis('off')
    os.makedirs(os.path.dirname(out_path) or '.', exist_ok=True)
    fig.savefig(out_path)
    plt.close(fig)
    logging.info(f"Saved path overlay image to {out_path}")


def plot_paths_3d(paths, rs, disk_radii=(0.0, 0.0), camera_pos=None,
                  out_path='images/paths_3d.png', azimuths=(0, 90, 180, 270)):
    """
    3D view of the captured trajectories in kernel length units:
    - event horizon (sphere at rs)
    - accretion disk annulus in the y = 0 plane (skipped when hidden)
    - camera position (point)
    - captured rays in orange, with start (lime) and end (red) markers
    One image per entry of *azimuths* is written next to *out_path*.
    """
    u_sphere, v_sphere = np.mgrid[0:2*np.pi:40j, 0:np.pi:20j]
    x_s = rs * np.cos(u_sphere) * np.sin(v_sphere)
    y_s = rs * np.cos(v_sphere)
    z_s = rs * np.sin(u_sphere) * np.sin(v_sphere)

    fig = plt.figure(figsize=(8, 8))
    ax = fig.add_subplot(111, projection='3d')

    # matplotlib's z axis is vertical, so the kernel's (x, y, z) is drawn as (x, z, y)
    r1, r2 = disk_radii
    if r2 > r1 > 0:
        rr, pp = np.meshgrid(np.linspace(r1, r2, 8), np.linspace(0, 2*np.pi, 80))
        ax.plot_surface(rr * np.cos(pp), rr * np.sin(pp), np.zeros_like(rr),
                        color='darkorange', alpha=0.35, linewidth=0)

    extent = 2.0 * rs
    if camera_pos is not None:
        camera_pos = np.asarray(camera_pos, dtype=np.float64)
        ax.scatter([camera_pos[0]], [camera_pos[2]], [camera_pos[1]], color='red', s=100)
        extent = max(extent, np.linalg.norm(camera_pos))

    n_drawn = 0
    for traj in paths:
        if len(traj) == 0:
            continue
        ax.plot(traj[:, 0], traj[:, 2], traj[:, 1], color='orange', lw=1)
        ax.scatter(traj[0, 0], traj[0, 2], traj[0, 1], color='lime', s=20)
        ax.scatter(traj[-1, 0], traj[-1, 2], traj[-1, 1], color='red', s=20)
        extent = max(extent, np.abs(traj).max())
        n_drawn += 1
    if n_drawn == 0:
        logging.warning("plot_paths_3d: no captured rays to plot")

    ax.plot_surface(x_s, z_s, y_s, color='black', alpha=1.0)
    ax.plot_wireframe(x_s, z_s, y_s, color='yellow', linewidth=0.1)

    ax.set_xlabel('x')
    ax.set_ylabel('z')
    ax.set_zlabel('y')
    ax.set_title('Captured Rays around the Schwarzschild Horizon')
    lim = extent * 1.1
    for axis in 'xyz':
        getattr(ax, f'set_{axis}lim')([-lim, lim])
    legend_elements = [
        Line2D([0], [0], marker='o', color='w', label='Camera', markerfacecolor='red', markersize=10),
        Line2D([0], [0], color='black', lw=4, label='Event Horizon'),
        Line2D([0], [0], color='darkorange', lw=4, alpha=0.35, label='Accretion Disk'),
        Line2D([0], [0], color='orange', lw=2, label='Captured Rays'),
    ]
    ax.legend(handles=legend_elements)
    os.makedirs(os.path.dirname(out_path) or '.', exist_ok=True)
    plt.tight_layout()

    base, ext = os.path.splitext(out_path)
    written = []
    for azim in azimuths:
        ax.view_init(elev=30, azim=azim)
        out_path_rot = f"{base}_azim{azim}{ext}"
        fig.savefig(out_path_rot)
        written.append(out_path_rot)
        logging.info(f"Saved 3D path view to {out_path_rot}")
    plt.close(fig)
    return written
