import logging
from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import LinearSegmentedColormap

from ..analysis.statistics import Histogram

logger = logging.getLogger(__name__)


def plot_histogram(
    histogram: Histogram,
    title: str = "Mean Surface Temperature",
    palette: Optional[List[str]] = None,
    vis_range: Optional[Tuple[float, float]] = None,
    figsize: Tuple[int, int] = (10, 5),
    save_path: str = None
) -> plt.Figure:
    """
    Bar chart of a pixel-value histogram.

    Args:
        histogram: result of compute_histogram
        title: chart title
        palette: colours the bars by bucket centre (same ramp as the map layer)
        vis_range: (min, max) of the palette ramp; marked on the chart
        figsize: figure size
        save_path: optional path to save the figure

    Returns:
        The matplotlib Figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)

    if histogram.total == 0:
        ax.text(0.5, 0.5, "No valid pixels", transform=ax.transAxes,
                ha='center', va='center', fontsize=14, color='gray')
        ax.set_title(title)
    else:
        edges = np.asarray(histogram.bucket_edges)
        counts = np.asarray(histogram.counts)
        centres = (edges[:-1] + edges[1:]) / 2
        widths = np.diff(edges)

        colors = 'steelblue'
        if palette:
            cmap = LinearSegmentedColormap.from_list('hist', palette if len(palette) > 1 else palette * 2)
            lo, hi = vis_range if vis_range else (edges[0], edges[-1])
            colors = cmap(np.clip((centres - lo) / max(hi - lo, 1e-12), 0, 1))

        ax.bar(centres, counts, width=widths, color=colors, edgecolor='none', align='center')

        if vis_range:
            for value in vis_range:
                ax.axvline(value, color='black', linestyle='--', linewidth=1, alpha=0.6)

        ax.set_xlabel(f"{histogram.band} (°F)")
        ax.set_ylabel('Pixel count')
        ax.set_title(f"{title} (n={histogram.total:,}, scale={histogram.scale:g} m)")
        ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Saved histogram chart to {save_path}")

    return fig
