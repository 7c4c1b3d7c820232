import logging
import math
import numbers
import warnings
from collections import Counter
from dataclasses import dataclass, field

import numpy as np
import numpy.linalg as nplg

logger = logging.getLogger(__name__)

### Hyperparameters

default_k = 5
default_p = 2
fallback_order = 2 # euclidean, used when p is not a valid norm order
max_finite_order = 2**53 # above this, (sum of |diff|^p)^(1/p) equals the max to float precision

# ----------------------------- Errors -------------------------------------

class InvalidInputError(ValueError):
    """Raised when a query cannot be answered with the given inputs
    (empty dataset, dimension mismatch, k out of range)."""


class NonStandardNormWarning(UserWarning):
    """Emitted when p is neither a positive integer nor infinity. The
    computation goes on with the euclidean norm."""

# ----------------------------- Norms --------------------------------------

@dataclass(frozen=True)
class FiniteNorm:
    order: int

    def __str__(self):
        return str(self.order)


@dataclass(frozen=True)
class InfinityNorm:

    def __str__(self):
        return "inf"


@dataclass(frozen=True)
class OtherNorm:
    value: object

    def __str__(self):
        return f"other({self.value!r})"


_INFINITY_NAMES = ("inf", "infinity")


def as_pnorm(p):
    """Sort a raw p value into one of the three norm kinds

    Args:
        p (int, float, str or norm): requested norm order

    Returns:
        FiniteNorm, InfinityNorm or OtherNorm: the tagged norm
    """
    if isinstance(p, (FiniteNorm, InfinityNorm, OtherNorm)):
        return p
    if isinstance(p, (bool, np.bool_)):
        return OtherNorm(p)
    if isinstance(p, str):
        if p.strip().lower() in _INFINITY_NAMES:
            return InfinityNorm()
        return OtherNorm(p)
    if isinstance(p, numbers.Integral):
        return FiniteNorm(int(p)) if p >= 1 else OtherNorm(p)
    if isinstance(p, numbers.Real):
        if math.isinf(p) and p > 0:
            return InfinityNorm()
        if math.isfinite(p) and p >= 1 and float(p).is_integer():
            return FiniteNorm(int(p))
    return OtherNorm(p)


def resolve_pnorm(p):
    """Return the norm that will actually be used for p, warning when
    the euclidean fallback replaces an unsupported value"""
    norm = as_pnorm(p)
    if isinstance(norm, OtherNorm):
        warnings.warn(
            f"p={norm.value!r} is not a positive integer nor infinity, "
            f"falling back to p={fallback_order}",
            NonStandardNormWarning,
            stacklevel=3,
        )
        logger.debug(f"Norm {norm} replaced by p={fallback_order}")
        return FiniteNorm(fallback_order)
    return norm

# ----------------------------- Data ---------------------------------------

def _sorted_labels(labels):
    labels = list(labels)
    try:
        return sorted(labels)
    except TypeError:
        return sorted(labels, key=str)


def _as_label_array(labels):
    """1-D array of labels keeping each label as given, tuples and mixed
    types included"""
    if isinstance(labels, np.ndarray):
        if labels.ndim != 1:
            raise InvalidInputError(f"Labels must form a 1-D array, got shape {labels.shape}")
        return labels.copy()

    labels = list(labels)
    arr = np.array(labels)
    if arr.ndim == 1 and arr.tolist() == labels:
        return arr

    arr = np.empty(len(labels), dtype=object)
    for i, label in enumerate(labels):
        arr[i] = label
    return arr


@dataclass(frozen=True, eq=False)
class LabeledDataset:
    """Points paired by position with their class labels. Both arrays are
    made read-only so that queries can share the dataset freely."""
    points: np.ndarray
    labels: np.ndarray

    def __post_init__(self):
        try:
            points = np.array(self.points, dtype=float)
        except (TypeError, ValueError) as err:
            raise InvalidInputError(f"Points must be real vectors of the same dimension: {err}") from err
        labels = _as_label_array(self.labels)

        if points.size == 0:
            points = points.reshape(0, points.shape[-1] if points.ndim == 2 else 0)
        if points.ndim != 2:
            raise InvalidInputError(f"Points must form a 2-D array, got shape {points.shape}")
        if not np.all(np.isfinite(points)):
            raise InvalidInputError("Points must have finite coordinates")
        if labels.ndim != 1 or len(labels) != len(points):
            raise InvalidInputError(
                f"Expected one label per point: {len(points)} points, {labels.size} labels")

        points.setflags(write=False)
        labels.setflags(write=False)
        object.__setattr__(self, "points", points)
        object.__setattr__(self, "labels", labels)

    @classmethod
    def from_frame(cls, df, features, target):
        return cls(df[list(features)].to_numpy(), df[target].to_numpy())

    def __len__(self):
        return len(self.points)

    @property
    def dim(self):
        return self.points.shape[1]

    @property
    def classes(self):
        return _sorted_labels(set(self.labels.tolist()))

# ----------------------------- Model --------------------------------------

@dataclass(frozen=True, eq=False)
class VoteResult:
    """Outcome of one query.

    `proportions` maps each label found among the selected neighbours to
    its count divided by the requested k. When points tie at the k-th
    distance they are all selected, so the proportions may add up to more
    than 1.0; `total` gives the actual sum.
    """
    proportions: dict
    k: int
    p: object
    neighbours: np.ndarray = field(repr=False)
    distances: np.ndarray = field(repr=False)

    @property
    def total(self):
        return sum(self.proportions.values())


def check_query(dataset, query):
    if len(dataset) == 0:
        raise InvalidInputError("Cannot query an empty dataset")
    if dataset.dim == 0:
        raise InvalidInputError("Cannot query points without coordinates")
    try:
        query = np.asarray(query, dtype=float)
    except (TypeError, ValueError) as err:
        raise InvalidInputError(f"Query must be a real vector: {err}") from err
    if query.ndim != 1 or query.shape[0] != dataset.dim:
        raise InvalidInputError(
            f"Query of shape {query.shape} does not match dataset dimension {dataset.dim}")
    if not np.all(np.isfinite(query)):
        raise InvalidInputError(f"Query must have finite coordinates, got {query}")
    return query


def check_k(k, size):
    if isinstance(k, (bool, np.bool_)) or not isinstance(k, numbers.Integral):
        raise InvalidInputError(f"k must be an integer, got {k!r}")
    if not 1 <= k <= size:
        raise InvalidInputError(f"k must be between 1 and {size}, got {k}")
    return int(k)


def _norm_distances(diff, norm):
    scale = diff.max(axis=1)
    if isinstance(norm, InfinityNorm) or norm.order > max_finite_order:
        return scale

    # rows are divided by their largest component so that |diff|^p stays
    # within float range for high orders
    safe = np.where(scale > 0, scale, 1.0)
    return scale * nplg.norm(diff / safe[:, np.newaxis], ord=float(norm.order), axis=1)


def distances(dataset, query, p=default_p):
    """Compute the p-norm distance from the query to every labeled point

    Args:
        dataset (LabeledDataset): labeled points
        query (numpy.ndarray): point of the same dimension as the dataset
        p (int, float, str or norm): norm order, a positive integer or infinity.
            Any other value falls back to the euclidean norm with a warning.

    Returns:
        numpy.ndarray: distances, aligned with the dataset points
    """
    query = check_query(dataset, query)
    norm = resolve_pnorm(p)
    return _norm_distances(np.abs(dataset.points - query), norm)


def tally(dataset, query, k, norm):
    dist = _norm_distances(np.abs(dataset.points - query), norm)
    threshold = np.partition(dist, k-1)[k-1] # k-th smallest distance

    # every point at or below the threshold takes part in the vote
    selected = np.flatnonzero(dist <= threshold)
    selected = selected[np.argsort(dist[selected], kind="stable")]
    if len(selected) > k:
        logger.debug(f"{len(selected) - k} extra neighbour(s) tied at distance {threshold}")

    counts = Counter(dataset.labels[selected].tolist())
    proportions = {label: counts[label]/k for label in _sorted_labels(counts)}

    return VoteResult(proportions=proportions, k=k, p=norm,
                      neighbours=selected, distances=dist)


def classify(dataset, query, k=default_k, p=default_p):
    """Vote among the k nearest neighbours of the query

    Args:
        dataset (LabeledDataset): labeled points
        query (numpy.ndarray): point to classify
        k (int): number of neighbours, between 1 and the dataset size
        p (int, float, str or norm): norm order

    Returns:
        VoteResult: label proportions with the k and the norm used
    """
    query = check_query(dataset, query)
    k = check_k(k, len(dataset))
    norm = resolve_pnorm(p)
    return tally(dataset, query, k, norm)


def majority_label(vote):
    """Label with the highest proportion. Ties go to the smallest label."""
    best = max(vote.proportions.values())
    tied = [label for label, share in vote.proportions.items() if share == best]
    return _sorted_labels(tied)[0]


def predict(dataset, queries, k=default_k, p=default_p):
    """Majority label for each row of queries

    Args:
        dataset (LabeledDataset): labeled points
        queries (numpy.ndarray): 2-D array, one query per row
        k (int): number of neighbours
        p (int, float, str or norm): norm order, resolved once for the batch

    Returns:
        numpy.ndarray: predicted labels
    """
    queries = np.atleast_2d(np.asarray(queries, dtype=float))
    k = check_k(k, len(dataset))
    norm = resolve_pnorm(p)

    labels = []
    for query in queries:
        query = check_query(dataset, query)
        labels.append(majority_label(tally(dataset, query, k, norm)))
    return _as_label_array(labels)
