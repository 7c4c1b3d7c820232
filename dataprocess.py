import io
import logging
import urllib.request

import bs4 as bs
import numpy as np
import pandas as pd
from scipy.stats import multivariate_normal

from knn_model import InvalidInputError, LabeledDataset

logger = logging.getLogger(__name__)

### Hyperparameters

n_per_class = 100
spread = 0.1 # standard deviation of each simulated cluster

SYNTH_URLS = {
    "train": "https://www.stats.ox.ac.uk/pub/PRNN/synth.tr",
    "test": "https://www.stats.ox.ac.uk/pub/PRNN/synth.te",
}
SYNTH_FEATURES = ("xs", "ys")
SYNTH_TARGET = "yc"

# ----------------------------- Simulation ---------------------------------

def simulate_clusters(centers, labels, n_per_class=n_per_class, spread=spread, seed=None):
    """Draw isotropic gaussian clusters, one per label

    Args:
        centers (array-like): one center per class, all of the same dimension
        labels (list): class label of each center
        n_per_class (int, optional): points drawn around each center. Defaults to 100.
        spread (float, optional): standard deviation along every axis. Defaults to 0.1.
        seed (int, optional): seed of the random generator

    Returns:
        LabeledDataset: points grouped by class, in the order of `labels`
    """
    centers = np.atleast_2d(np.asarray(centers, dtype=float))
    if len(centers) != len(labels):
        raise InvalidInputError(f"Got {len(centers)} centers for {len(labels)} labels")
    if n_per_class < 1 or spread <= 0:
        raise InvalidInputError("n_per_class and spread must be positive")

    rng = np.random.default_rng(seed)
    cov = spread**2 * np.eye(centers.shape[1])

    points, targets = [], []
    for center, label in zip(centers, labels):
        sample = multivariate_normal.rvs(mean=center, cov=cov, size=n_per_class,
                                         random_state=rng)
        points.append(np.reshape(sample, (n_per_class, centers.shape[1])))
        targets += [label] * n_per_class

    logger.debug(f"Simulated {len(targets)} points in {len(labels)} clusters")
    return LabeledDataset(np.vstack(points), np.array(targets))


def two_clusters(n_per_class=n_per_class, spread=spread, seed=None):
    """"red" points around (0, 0) and "blue" points around (2, 2)"""
    return simulate_clusters([[0, 0], [2, 2]], ["red", "blue"],
                             n_per_class=n_per_class, spread=spread, seed=seed)

# ----------------------------- Ripley's synthetic data --------------------

def parse_synth(source):
    """Parse the raw synth.tr / synth.te page into a DataFrame with the
    columns xs, ys, yc"""
    soup = bs.BeautifulSoup(source, 'lxml')
    table = soup.find('p')
    text = table.string if table is not None and table.string else soup.get_text()

    df = pd.read_csv(io.StringIO(text), sep=r"\s+")
    df[SYNTH_TARGET] = df[SYNTH_TARGET].astype(int)
    return df


def fetch_synth(split="train"):
    """Download Ripley's two-class synthetic data

    Args:
        split (str, optional): "train" (250 points) or "test" (1000 points)

    Returns:
        pandas.DataFrame: columns xs, ys, yc
    """
    if split not in SYNTH_URLS:
        raise ValueError(f"Unknown split '{split}'. Try one of: {', '.join(SYNTH_URLS)}")

    logger.info(f"Downloading {SYNTH_URLS[split]}")
    source = urllib.request.urlopen(SYNTH_URLS[split]).read()
    return parse_synth(source)


def synth_dataset(df):
    return LabeledDataset.from_frame(df, SYNTH_FEATURES, SYNTH_TARGET)
