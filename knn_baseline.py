import logging

import numpy as np
from sklearn.model_selection import LeaveOneOut, train_test_split
from sklearn.neighbors import KNeighborsClassifier
from tqdm import tqdm

from knn_model import (InfinityNorm, LabeledDataset, check_k, default_k, default_p,
                       majority_label, predict, resolve_pnorm, tally)

logger = logging.getLogger(__name__)

### Hyperparameters

test_size = 0.33
random_state = 42

# ---------- With classical mean accuracy -------------

def holdout_accuracy(dataset, k=default_k, p=default_p, test_size=test_size, seed=random_state):
    """Accuracy on a held-out part of the dataset, the rest being used
    as labeled points

    Args:
        dataset (LabeledDataset): labeled points
        k (int): number of neighbours
        p (int, float or str): norm order
        test_size (float, optional): share of points held out. Defaults to 0.33.
        seed (int, optional): seed of the split. Defaults to 42.

    Returns:
        float: share of correctly labeled test points
    """
    X_train, X_test, y_train, y_test = train_test_split(dataset.points,
                                                        dataset.labels,
                                                        test_size=test_size,
                                                        random_state=seed)

    pred = predict(LabeledDataset(X_train, y_train), X_test, k=k, p=p)
    accuracy = np.mean(pred == y_test)
    logger.info(f"Hold-out accuracy: {(100*accuracy):0.1f}% on {len(y_test)} points")
    return float(accuracy)

# ------------- Leave one out method ---------------------

def leave_one_out_accuracy(dataset, k=default_k, p=default_p, progress=False):
    """Classify every point against all the others

    Args:
        dataset (LabeledDataset): labeled points
        k (int): number of neighbours, at most N-1
        p (int, float or str): norm order
        progress (bool, optional): show a tqdm progress bar

    Returns:
        float: share of points whose vote gives back their own label
    """
    k = check_k(k, len(dataset) - 1)
    norm = resolve_pnorm(p)

    loo = LeaveOneOut()
    counter = 0
    for train_index, test_index in tqdm(loo.split(dataset.points), total=len(dataset),
                                        disable=not progress):
        rest = LabeledDataset(dataset.points[train_index], dataset.labels[train_index])
        vote = tally(rest, dataset.points[test_index[0]], k, norm)
        counter += majority_label(vote) == dataset.labels[test_index[0]]

    accuracy = counter / len(dataset)
    logger.info(f"Leave-one-out accuracy: {(100*accuracy):0.1f}%")
    return float(accuracy)

# ------------- Cross-check with scikit-learn ------------

def sklearn_agreement(dataset, queries, k=default_k, p=default_p):
    """Share of queries on which the majority label matches the prediction
    of scikit-learn's KNeighborsClassifier. Only ties at the k-th distance
    or between labels can make them differ."""
    norm = resolve_pnorm(p)
    if isinstance(norm, InfinityNorm):
        neigh = KNeighborsClassifier(n_neighbors=k, metric="chebyshev", algorithm="brute")
    else:
        neigh = KNeighborsClassifier(n_neighbors=k, metric="minkowski", p=norm.order,
                                     algorithm="brute")
    neigh.fit(dataset.points, dataset.labels)

    queries = np.atleast_2d(np.asarray(queries, dtype=float))
    ours = predict(dataset, queries, k=k, p=norm)
    return float(np.mean(ours == neigh.predict(queries)))
