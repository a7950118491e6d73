"""
Plotting of iterate and solution trajectories.
"""

import logging
from typing import TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure as MplFigure


if TYPE_CHECKING:
    from .iterate import Iterate


logger = logging.getLogger(__name__)


def plot_iterate(
    iterate: "Iterate",
    variable_names: tuple[str, ...] = (),
    figsize: tuple[float, float] = (12.0, 8.0),
    show: bool = True,
) -> MplFigure:
    """
    Plot every time-varying quantity of an iterate, one subplot per quantity.

    Args:
        iterate: Iterate or Solution to plot
        variable_names: Optional subset of quantity names to plot, using the
            labels of ``Iterate.labeled_rows()``
        figsize: Figure size
        show: Whether to call ``plt.show()`` before returning

    Returns:
        The created figure.

    Examples:
        >>> plot_iterate(solution)
        >>> plot_iterate(solution, ("x", "u"), show=False)
    """
    rows_by_name: dict[str, np.ndarray] = iterate.labeled_rows()

    if variable_names:
        missing = [name for name in variable_names if name not in rows_by_name]
        if missing:
            raise ValueError(f"Variables not found in iterate: {missing}")
        rows_by_name = {name: rows_by_name[name] for name in variable_names}

    if not rows_by_name:
        logger.warning("Nothing to plot: iterate has no time-varying quantities")
        return plt.figure(figsize=figsize)

    rows, cols = _determine_subplot_layout(len(rows_by_name))
    fig, axes = plt.subplots(rows, cols, figsize=figsize, sharex=False, squeeze=False)
    flat_axes = axes.flatten()

    for ax, (name, values) in zip(flat_axes, rows_by_name.items()):
        ax.plot(iterate.times, values, marker="o", markersize=3)
        ax.set_ylabel(name)
        ax.set_xlabel("Time")
        ax.grid(True, alpha=0.3)

    # Hide unused subplots
    for ax in flat_axes[len(rows_by_name) :]:
        ax.set_visible(False)

    fig.tight_layout()
    if show:
        plt.show()
    return fig


def _determine_subplot_layout(num_plots: int) -> tuple[int, int]:
    if num_plots <= 1:
        return (1, 1)

    rows = int(np.ceil(np.sqrt(num_plots)))
    cols = int(np.ceil(num_plots / rows))
    return (rows, cols)
