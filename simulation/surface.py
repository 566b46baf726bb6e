# surface.py
import os
import abc
import logging

import matplotlib.pyplot as plt
import numpy as np
from PIL import Image

from visualization.plot import draw_path_overlay


class PresentationSurface(abc.ABC):
    """
    Where finished frames go. The engine only ever calls these methods and never
    checks which implementation it is talking to.
    """

    @abc.abstractmethod
    def make_current(self):
        """Bind the surface before a frame is produced."""

    @abc.abstractmethod
    def present(self, frame, overlay):
        """Show *frame* (HxWx3 uint8, sized to `pixel_size`) with a screen-space PathOverlay or None."""

    @abc.abstractmethod
    def pixel_size(self):
        """Current (width, height) in physical pixels."""

    def resize(self, width, height):
        """Window size changed. Surfaces that track their own size (windows) ignore it."""


class OffscreenSurface(PresentationSurface):
    """Headless surface that keeps the last presented frame in memory."""

    def __init__(self, width, height):
        self.width = int(width)
        self.height = int(height)
        self.frame = None
        self.overlay = None
        self.presented = 0
        self.bound = False

    def resize(self, width, height):
        self.width = int(width)
        self.height = int(height)

    def make_current(self):
        self.bound = True

    def present(self, frame, overlay):
        self.frame = frame
        self.overlay = overlay
        self.presented += 1

    def pixel_size(self):
        return self.width, self.height

    def save(self, out_path):
        if self.frame is None:
            raise RuntimeError("Nothing has been presented yet")
        os.makedirs(os.path.dirname(out_path) or '.', exist_ok=True)
        Image.fromarray(self.frame).save(out_path)
        logging.info(f"Saved frame to {out_path}")


class MatplotlibSurface(PresentationSurface):
    """
    Interactive window backed by a matplotlib figure.

    `attach(engine)` routes mouse, scroll, key and resize events of the figure
    to the engine's input hooks; `run(engine)` drives the render loop from a
    figure timer until the window is closed.
    """

    BUTTONS = {1: 'left', 2: 'middle', 3: 'right'}

    def __init__(self, width, height, title='Schwarzschild Black Hole'):
        dpi = 100
        self.fig = plt.figure(figsize=(width / dpi, height / dpi), dpi=dpi)
        if self.fig.canvas.manager is not None:
            self.fig.canvas.manager.set_window_title(title)
        self.ax = self.fig.add_axes([0, 0, 1, 1])
        self.ax.axis('off')
        self.image = self.ax.imshow(np.zeros((height, width, 3), dtype=np.uint8))
        self.overlay_artists = []

    def attach(self, engine):
        canvas = self.fig.canvas

        def on_press(event):
            if event.button in self.BUTTONS:
                engine.pointer_down(self.BUTTONS[event.button], event.x, self._flip_y(event.y))

        def on_release(event):
            if event.button in self.BUTTONS:
                engine.pointer_up(self.BUTTONS[event.button], event.x, self._flip_y(event.y))

        def on_move(event):
            if event.x is not None and event.y is not None:
                engine.pointer_move(event.x, self._flip_y(event.y))

        def on_scroll(event):
            engine.scroll(event.step)

        def on_key(event):
            engine.key_down(event.key)

        def on_resize(event):
            engine.resize(*self.pixel_size())

        canvas.mpl_connect('button_press_event', on_press)
        canvas.mpl_connect('button_release_event', on_release)
        canvas.mpl_connect('motion_notify_event', on_move)
        canvas.mpl_connect('scroll_event', on_scroll)
        canvas.mpl_connect('key_press_event', on_key)
        canvas.mpl_connect('resize_event', on_resize)

    def _flip_y(self, y):
        # matplotlib reports y from the bottom edge, the camera expects it from the top
        return self.pixel_size()[1] - y

    def make_current(self):
        plt.figure(self.fig.number)

    def present(self, frame, overlay):
        self.image.set_data(frame)
        self.image.set_extent((-0.5, frame.shape[1] - 0.5, frame.shape[0] - 0.5, -0.5))
        for artist in self.overlay_artists:
            artist.remove()
        self.overlay_artists = []
        if overlay is not None:
            self.overlay_artists = draw_path_overlay(self.ax, overlay)
        self.fig.canvas.draw_idle()

    def pixel_size(self):
        w, h = self.fig.canvas.get_width_height(physical=True)
        return max(1, w), max(1, h)

    def run(self, engine, interval_ms=16):
        self.attach(engine)
        timer = self.fig.canvas.new_timer(interval=interval_ms)
        timer.add_callback(engine.render)
        timer.start()
        plt.show()
        timer.stop()
