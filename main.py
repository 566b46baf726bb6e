#main.py
import os
import sys
import math
import logging

from tqdm import tqdm

from config import parse_args, build_scene_setup
from simulation.engine import BlackHoleEngine
from simulation.kernel import make_executor
from simulation.paths import save_paths_csv
from simulation.surface import OffscreenSurface, MatplotlibSurface
from visualization.plot import plot_paths_3d, save_overlay_image

# ---
# SI input, scaled kernel units: one length unit = Rs * 1e-3, so Rs = 1000
# ---

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s')


def frame_path(out, index, n_frames):
    if n_frames == 1:
        return out
    base, ext = os.path.splitext(out)
    return f"{base}_{index:04d}{ext or '.png'}"


def run_offline(engine, args):
    """Turntable: one still frame per azimuth step, written next to args.out."""
    surface = engine.surface
    all_paths = []
    for i in tqdm(range(args.frames), desc="Rendering frames", unit="frame"):
        azimuth = 2.0 * math.pi * i / args.frames

        def orbit(e, azimuth=azimuth):
            e.camera.azimuth = azimuth
        engine.post(orbit)
        engine.render()
        surface.save(frame_path(args.out, i, args.frames))
        if engine.paths:
            if surface.overlay is not None:
                base, ext = os.path.splitext(frame_path(args.out, i, args.frames))
                save_overlay_image(surface.frame, surface.overlay, f"{base}_paths{ext}")
            all_paths.extend(engine.paths)

    if engine.scene.enable_paths:
        if all_paths:
            save_paths_csv(all_paths, args.paths_csv, length_unit=engine.scene.length_unit)
            base, ext = os.path.splitext(args.out)
            plot_paths_3d(all_paths, engine.scene.rs_scaled, engine.scene.disk_radii(),
                          engine.camera.position() / engine.scene.length_unit,
                          out_path=f"{base}_paths_3d{ext or '.png'}")
        else:
            logging.warning("Path capture enabled but no seed ray was visible")


def main(argv=None):
    args = parse_args(argv)
    logging.getLogger().setLevel(args.log_level)

    try:
        scene = build_scene_setup(args)
        executor = make_executor(use_cuda=args.cuda)
        if args.interactive:
            surface = MatplotlibSurface(scene.window_width, scene.window_height)
        else:
            surface = OffscreenSurface(scene.window_width, scene.window_height)
        engine = BlackHoleEngine(surface, scene=scene, executor=executor)
        engine.load()
    except (ValueError, RuntimeError) as e:
        logging.error(f"Start-up failed: {e}")
        return 1

    logging.info(f"Mass {scene.mass:.3e} kg, Rs = {scene.rs:.4e} m, backend {executor.name}")
    if args.interactive:
        surface.run(engine)
    else:
        run_offline(engine, args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
