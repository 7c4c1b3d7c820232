import argparse
import logging
import sys
import time

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from joblib import Parallel, delayed
from matplotlib.colors import ListedColormap
from tqdm import tqdm

import dataprocess
from knn_model import (InvalidInputError, check_k, check_query, tally,
                       default_k, default_p, majority_label, resolve_pnorm)

logger = logging.getLogger(__name__)

### Hyperparameters

resolution = 100
margin = 0.5
palette = "tab10"

# ----------------------------- Grid ---------------------------------------

def make_grid(points, resolution=resolution, margin=margin):
    """Regular lattice covering the points, widened by a margin

    Args:
        points (numpy.ndarray): 2-D feature points, shape (N, 2)
        resolution (int, optional): number of cells along each axis. Defaults to 100.
        margin (float, optional): padding added around the bounding box. Defaults to 0.5.

    Returns:
        tuple: xx and yy coordinate matrices of shape (resolution, resolution)
    """
    points = np.asarray(points, dtype=float)
    if points.ndim != 2 or points.shape[1] != 2 or len(points) == 0:
        raise InvalidInputError(f"A decision surface needs 2-D points, got shape {points.shape}")
    if resolution < 2:
        raise InvalidInputError(f"Resolution must be at least 2, got {resolution}")

    (x_min, y_min), (x_max, y_max) = points.min(axis=0) - margin, points.max(axis=0) + margin
    return np.meshgrid(np.linspace(x_min, x_max, resolution),
                       np.linspace(y_min, y_max, resolution))


def _classify_row(dataset, row, k, norm):
    return [majority_label(tally(dataset, query, k, norm)) for query in row]


def classify_grid(dataset, xx, yy, k=default_k, p=default_p, n_jobs=None, progress=True):
    """Majority label of every cell of the lattice

    Every cell is an independent query, so rows can be dispatched to
    several workers with joblib.

    Args:
        dataset (LabeledDataset): 2-D labeled points
        xx (numpy.ndarray): x coordinates of the cells
        yy (numpy.ndarray): y coordinates of the cells
        k (int): number of neighbours
        p (int, float or str): norm order, resolved once for the whole grid
        n_jobs (int, optional): joblib workers. None or 1 runs sequentially.
        progress (bool, optional): show a tqdm progress bar. Defaults to True.

    Returns:
        numpy.ndarray: labels, same shape as xx
    """
    xx, yy = np.atleast_2d(np.asarray(xx, dtype=float), np.asarray(yy, dtype=float))
    if xx.shape != yy.shape:
        raise InvalidInputError(f"Coordinate grids differ in shape: {xx.shape} vs {yy.shape}")
    cells = np.stack([xx, yy], axis=-1)

    k = check_k(k, len(dataset))
    check_query(dataset, cells[0, 0])
    norm = resolve_pnorm(p)

    start = time.time()
    logger.info(f"Classifying {xx.size} cells (k={k}, p={norm}, {len(dataset)} points)")

    if n_jobs is None or n_jobs == 1:
        results = (_classify_row(dataset, row, k, norm) for row in cells)
    else:
        results = Parallel(n_jobs=n_jobs, return_as="generator")(
            delayed(_classify_row)(dataset, row, k, norm) for row in cells)

    # the bar advances as rows come back classified
    surface = np.empty(cells.shape[:2], dtype=object)
    for i, row in enumerate(tqdm(results, total=len(cells), disable=not progress)):
        for j, label in enumerate(row):
            surface[i, j] = label

    logger.info(f"Grid classified in {time.time() - start:.2f} seconds")
    return surface.reshape(xx.shape)

# ----------------------------- Plot ---------------------------------------

def plot_decision_surface(dataset, xx, yy, surface, ax=None, title=None):
    """Draw the classification map with the training points on top

    Args:
        dataset (LabeledDataset): 2-D labeled points
        xx (numpy.ndarray): x coordinates of the cells
        yy (numpy.ndarray): y coordinates of the cells
        surface (numpy.ndarray): label of each cell
        ax (matplotlib.axes.Axes, optional): where to draw
        title (str, optional): plot title

    Returns:
        matplotlib.axes.Axes: the axes drawn on
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 8))

    classes = sorted(set(map(str, dataset.labels)) | set(map(str, surface.ravel())))
    colors = sns.color_palette(palette, len(classes))
    cmap = ListedColormap(colors)

    codes = np.vectorize(lambda label: classes.index(str(label)))(surface)
    ax.pcolormesh(xx, yy, codes, cmap=cmap, vmin=-0.5, vmax=len(classes) - 0.5,
                  alpha=0.3, shading='auto')

    sns.scatterplot(x=dataset.points[:, 0], y=dataset.points[:, 1],
                    hue=dataset.labels.astype(str), hue_order=classes,
                    palette=dict(zip(classes, colors)), edgecolor="k", alpha=0.9, ax=ax)
    ax.set_xlim(xx.min(), xx.max())
    ax.set_ylim(yy.min(), yy.max())
    ax.legend(title="Class")
    if title:
        ax.set_title(title)
    return ax


def render(dataset, k=default_k, p=default_p, resolution=resolution, margin=margin,
           n_jobs=None, progress=True):
    """Grid, classify and plot in one go. Returns the figure."""
    xx, yy = make_grid(dataset.points, resolution=resolution, margin=margin)
    norm = resolve_pnorm(p)
    surface = classify_grid(dataset, xx, yy, k=k, p=norm, n_jobs=n_jobs, progress=progress)

    fig, ax = plt.subplots(figsize=(8, 8))
    plot_decision_surface(dataset, xx, yy, surface, ax=ax,
                          title=f"{k}-nearest neighbours, p={norm}")
    return fig

# ----------------------------- Command line -------------------------------

def _parse_p(value):
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def build_parser():
    parser = argparse.ArgumentParser(
        description="Render the decision surface of a p-norm k-nearest-neighbours classifier")

    parser.add_argument("--dataset", choices=["clusters", "synth"], default="clusters",
                        help="Simulated two clusters or Ripley's synthetic data")
    parser.add_argument("--k", type=int, default=default_k,
                        help="Number of neighbours")
    parser.add_argument("--p", type=_parse_p, default=default_p,
                        help="Norm order: a positive integer or 'inf'")
    parser.add_argument("--resolution", type=int, default=resolution,
                        help="Cells along each axis of the grid")
    parser.add_argument("--n-per-class", type=int, default=dataprocess.n_per_class,
                        help="Simulated points per class")
    parser.add_argument("--spread", type=float, default=dataprocess.spread,
                        help="Standard deviation of the simulated clusters")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed of the simulation")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Parallel workers for the grid (default: sequential)")
    parser.add_argument("--output", type=str, default="decision_surface.png",
                        help="Where to save the figure")
    parser.add_argument("--no-progress", action="store_true",
                        help="Hide the progress bar")
    parser.add_argument("--verbose", action="store_true",
                        help="Debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    logging.captureWarnings(True)

    try:
        if args.dataset == "synth":
            dataset = dataprocess.synth_dataset(dataprocess.fetch_synth("train"))
        else:
            dataset = dataprocess.two_clusters(n_per_class=args.n_per_class,
                                               spread=args.spread, seed=args.seed)
        fig = render(dataset, k=args.k, p=args.p, resolution=args.resolution,
                     n_jobs=args.n_jobs, progress=not args.no_progress)
    except InvalidInputError as err:
        logger.error(f"Rejected query: {err}")
        return 2

    fig.savefig(args.output, bbox_inches='tight', dpi=100)
    plt.close(fig)
    logger.info(f"Decision surface saved to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
