"""Tests for the map display surface (basemap tiles mocked)."""

import os
import tempfile
import unittest
from unittest.mock import patch

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

from suhi_st.analysis.aoi import AreaOfInterest
from suhi_st.analysis.statistics import Histogram
from suhi_st.data.image import Image
from suhi_st.visualization.map_display import MapDisplay, VisParams, to_web_mercator
from suhi_st.visualization.plots import plot_histogram


def _st_layer_image():
    aoi = AreaOfInterest.from_bbox([-106.66, 35.07, -106.64, 35.09])
    grid = aoi.grid(30)
    values = np.linspace(60, 130, grid.pixel_count, dtype="float32").reshape(grid.shape)
    mask = np.ones(grid.shape, dtype=bool)
    mask[:5, :] = False
    return Image({"ST_B10": values}, grid, {"ST_B10": mask})


class TestMapDisplay(unittest.TestCase):
    def setUp(self):
        self.image = _st_layer_image()
        self.vis = VisParams(min=50, max=140, palette=["blue", "white", "red"])

    def tearDown(self):
        plt.close('all')

    def test_set_center_validates(self):
        display = MapDisplay()
        display.set_center(-106.46, 35.24, 9)
        self.assertEqual(display.center, (-106.46, 35.24))
        self.assertEqual(display.zoom, 9)
        with self.assertRaises(ValueError):
            display.set_center(-106.46, 86.0, 9)
        with self.assertRaises(ValueError):
            display.set_center(-106.46, 35.24, 25)
        with self.assertRaises(ValueError):
            display.set_center(-106.46, 35.24, -1)

    def test_set_options(self):
        display = MapDisplay()
        display.set_options("hybrid")
        self.assertEqual(display.basemap, "HYBRID")
        with self.assertRaises(ValueError):
            display.set_options("MOON")

    def test_vis_params_validation(self):
        with self.assertRaises(ValueError):
            VisParams(min=140, max=50)
        with self.assertRaises(ValueError):
            VisParams(min=0, max=1, palette=[])

    def test_add_layer_unknown_band(self):
        display = MapDisplay()
        with self.assertRaises(KeyError):
            display.add_layer(self.image, VisParams(min=0, max=1, band="QA_PIXEL"), "QA")

    @patch('contextily.add_basemap')
    def test_render_shown_layer(self, mock_base):
        display = MapDisplay("SATELLITE")
        display.set_center(-106.65, 35.08, 12)
        display.add_layer(self.image, self.vis, "ST", shown=True)
        fig, ax = display.render(title="ST")

        self.assertEqual(len(ax.images), 1)
        self.assertEqual(ax.get_title(), "ST")
        self.assertEqual(mock_base.call_count, 1)
        im = ax.images[0]
        self.assertEqual(im.get_clim(), (50, 140))

    @patch('contextily.add_basemap')
    def test_hidden_layer_not_drawn(self, mock_base):
        display = MapDisplay()
        display.add_layer(self.image, self.vis, "ST", shown=False)
        fig, ax = display.render()
        self.assertEqual(len(ax.images), 0)

    @patch('contextily.add_basemap')
    def test_hybrid_draws_labels(self, mock_base):
        display = MapDisplay("HYBRID")
        display.render()
        self.assertEqual(mock_base.call_count, 2)

    @patch('contextily.add_basemap', side_effect=Exception("offline"))
    def test_basemap_failure_is_not_fatal(self, mock_base):
        display = MapDisplay()
        display.add_layer(self.image, self.vis, "ST")
        fig, ax = display.render()
        self.assertEqual(len(ax.images), 1)

    @patch('contextily.add_basemap')
    def test_save(self, mock_base):
        display = MapDisplay()
        display.add_layer(self.image, self.vis, "ST")
        with tempfile.TemporaryDirectory() as tmp:
            out = display.save(os.path.join(tmp, "maps", "st.png"))
            self.assertTrue(out.exists())
            self.assertGreater(out.stat().st_size, 0)


def test_to_web_mercator_keeps_mask():
    image = _st_layer_image()
    values, extent = to_web_mercator(image, "ST_B10")
    xmin, xmax, ymin, ymax = extent
    assert xmin < xmax and ymin < ymax
    # Web Mercator x of Albuquerque
    assert -11_880_000 < xmin < -11_860_000
    assert values.mask.any()
    assert (~values.mask).any()
    valid = values.compressed()
    assert valid.min() >= 60 and valid.max() <= 130


def test_to_web_mercator_decimates_large_layers():
    image = _st_layer_image()
    values, _ = to_web_mercator(image, "ST_B10", max_pixels=100)
    assert values.size <= 100


def test_plot_histogram():
    hist = Histogram("ST_B10", np.array([50.0, 60.0, 70.0, 80.0]), np.array([5, 10, 2]), 17, 30.0)
    fig = plot_histogram(hist, palette=["blue", "white", "red"], vis_range=(50, 140))
    ax = fig.axes[0]
    assert len(ax.patches) == 3
    assert "n=17" in ax.get_title()
    plt.close(fig)


def test_plot_empty_histogram():
    hist = Histogram("ST_B10", np.array([]), np.array([], dtype=int), 0, 30.0)
    fig = plot_histogram(hist)
    assert len(fig.axes[0].patches) == 0
    plt.close(fig)
