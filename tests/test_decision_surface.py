"""
Tests for the grid driver, the plot and the command line.
"""

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pytest

import decision_surface
from dataprocess import two_clusters
from decision_surface import (classify_grid, main, make_grid,
                              plot_decision_surface, render)
from knn_model import InvalidInputError, LabeledDataset, NonStandardNormWarning


@pytest.fixture(scope="module")
def clusters():
    return two_clusters(n_per_class=30, spread=0.1, seed=0)


def test_make_grid_covers_points(clusters):
    xx, yy = make_grid(clusters.points, resolution=10, margin=0.5)

    assert xx.shape == yy.shape == (10, 10)
    assert xx.min() < clusters.points[:, 0].min()
    assert yy.max() > clusters.points[:, 1].max()


def test_make_grid_rejects_non_planar_points():
    with pytest.raises(InvalidInputError):
        make_grid(np.zeros((5, 3)))

    with pytest.raises(InvalidInputError):
        make_grid(np.zeros((5, 2)), resolution=1)


def test_classify_grid_splits_clusters(clusters):
    xx, yy = make_grid(clusters.points, resolution=8)
    surface = classify_grid(clusters, xx, yy, k=5, p=2, progress=False)

    assert surface.shape == xx.shape
    assert surface[0, 0] == "red"
    assert surface[-1, -1] == "blue"


def test_classify_grid_parallel_matches_sequential(clusters):
    xx, yy = make_grid(clusters.points, resolution=6)

    sequential = classify_grid(clusters, xx, yy, k=3, p=1, progress=False)
    parallel = classify_grid(clusters, xx, yy, k=3, p=1, n_jobs=2, progress=False)

    np.testing.assert_array_equal(sequential, parallel)


def test_classify_grid_warns_once_and_completes(clusters):
    xx, yy = make_grid(clusters.points, resolution=4)

    with pytest.warns(NonStandardNormWarning) as record:
        surface = classify_grid(clusters, xx, yy, k=3, p=0.5, progress=False)

    assert len([w for w in record if w.category is NonStandardNormWarning]) == 1
    assert set(surface.ravel()) <= {"red", "blue"}


def test_classify_grid_rejects_bad_k(clusters):
    xx, yy = make_grid(clusters.points, resolution=4)
    with pytest.raises(InvalidInputError):
        classify_grid(clusters, xx, yy, k=0, progress=False)


def test_classify_grid_rejects_wrong_dimension():
    dataset = LabeledDataset(np.zeros((4, 3)), [0, 1, 0, 1])
    xx, yy = np.meshgrid(np.linspace(0, 1, 3), np.linspace(0, 1, 3))
    with pytest.raises(InvalidInputError):
        classify_grid(dataset, xx, yy, k=1, progress=False)


def test_plot_decision_surface(clusters):
    xx, yy = make_grid(clusters.points, resolution=5)
    surface = classify_grid(clusters, xx, yy, k=3, p=2, progress=False)

    ax = plot_decision_surface(clusters, xx, yy, surface, title="test")

    assert ax.get_title() == "test"
    plt.close(ax.figure)


def test_render_returns_figure(clusters):
    fig = render(clusters, k=3, p="inf", resolution=5, progress=False)
    assert len(fig.axes) == 1
    plt.close(fig)


def test_main_writes_figure(tmp_path):
    output = tmp_path / "surface.png"
    status = main(["--k", "3", "--p", "inf", "--resolution", "5", "--n-per-class", "10",
                   "--seed", "0", "--no-progress", "--output", str(output)])

    assert status == 0
    assert output.exists()


def test_main_rejects_invalid_k(tmp_path):
    output = tmp_path / "surface.png"
    status = main(["--k", "50", "--n-per-class", "10", "--resolution", "5",
                   "--no-progress", "--output", str(output)])

    assert status == 2
    assert not output.exists()


def test_render_title_reports_norm_used(clusters):
    with pytest.warns(NonStandardNormWarning):
        fig = render(clusters, k=1, p=0, resolution=4, progress=False)

    assert fig.axes[0].get_title() == "1-nearest neighbours, p=2"
    plt.close(fig)


@pytest.mark.parametrize("n_jobs", [None, 2])
def test_classify_grid_progress_follows_classified_rows(clusters, monkeypatch, n_jobs):
    seen = []

    def recording_tqdm(iterable, total=None, disable=False):
        for item in iterable:
            seen.append(item)
            yield item

    monkeypatch.setattr(decision_surface, "tqdm", recording_tqdm)
    xx, yy = make_grid(clusters.points, resolution=5)
    surface = classify_grid(clusters, xx, yy, k=3, p=2, n_jobs=n_jobs)

    assert len(seen) == 5
    assert all(set(row) <= {"red", "blue"} for row in seen)
    assert seen[0] == surface[0].tolist()
