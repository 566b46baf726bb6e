import argparse

from simulation.scene import SceneSetup, HorizonHandling


def build_parser():
    parser = argparse.ArgumentParser(description="Schwarzschild Black Hole Ray Tracer")
    parser.add_argument('--mass', type=float, default=8.54e36, help='Black hole mass in kg (default: 8.54e36, Sgr A*)')
    parser.add_argument('--window-width', type=int, default=1600, help='Output frame width in pixels (default: 1600)')
    parser.add_argument('--window-height', type=int, default=1200, help='Output frame height in pixels (default: 1200)')
    parser.add_argument('--compute-width', type=int, default=320, help='Trace grid width, 1..2000 (default: 320)')
    parser.add_argument('--compute-height', type=int, default=240, help='Trace grid height, 1..2000 (default: 240)')
    parser.add_argument('--steps', type=int, default=8000, help='Integration steps per ray while the camera is still (default: 8000)')
    parser.add_argument('--steps-moving', type=int, default=4000, help='Integration steps per ray while the camera moves (default: 4000)')
    parser.add_argument('--no-disk', action='store_true', help='Hide the accretion disk')
    parser.add_argument('--disk-inner', type=float, default=2.7, help='Disk inner radius in Rs (default: 2.7)')
    parser.add_argument('--disk-outer', type=float, default=4.2, help='Disk outer radius in Rs (default: 4.2)')
    parser.add_argument('--horizon', type=str, default='black', choices=[m.name.lower() for m in HorizonHandling],
                        help='Horizon handling mode (default: black)')
    parser.add_argument('--background', type=str, default=None, help='Equirectangular background image (default: checker sky)')
    parser.add_argument('--tiles', type=int, default=2, help='Background tiling, 1..8 (default: 2)')
    parser.add_argument('--fov', type=float, default=60.0, help='Vertical field of view in degrees (default: 60)')
    parser.add_argument('--paths', action='store_true', help='Capture a few seed ray trajectories per frame')
    parser.add_argument('--path-stride', type=int, default=4, help='Record every Nth integration step of a seed ray (default: 4)')
    parser.add_argument('--cuda', action='store_true', help='Run the trace kernel on a CUDA device')
    parser.add_argument('--interactive', action='store_true', help='Open an interactive window instead of rendering offline')
    parser.add_argument('--frames', type=int, default=1, help='Offline turntable frame count (default: 1)')
    parser.add_argument('--out', type=str, default='images/frame.png', help='Offline output path, frame index is appended (default: images/frame.png)')
    parser.add_argument('--paths-csv', type=str, default='sampled_rays.csv', help='CSV file for captured trajectories (default: sampled_rays.csv)')
    parser.add_argument('--log-level', type=str, default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    return parser


def parse_args(argv=None):
    return build_parser().parse_args(argv)


def build_scene_setup(args):
    """SceneSetup from parsed CLI arguments; raises ValueError on invalid values."""
    return SceneSetup(
        mass=args.mass,
        window_width=args.window_width,
        window_height=args.window_height,
        compute_width=args.compute_width,
        compute_height=args.compute_height,
        integration_steps_still=args.steps,
        integration_steps_moving=args.steps_moving,
        show_disk=not args.no_disk,
        disk_inner_rs=args.disk_inner,
        disk_outer_rs=args.disk_outer,
        horizon_handling=args.horizon,
        background_path=args.background,
        background_tiles=args.tiles,
        enable_paths=args.paths,
        path_stride=args.path_stride,
        fov_deg=args.fov,
    )
