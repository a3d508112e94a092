# utils/vectors.py
"""Cosine similarity helpers (numpy)."""
from typing import Sequence

import numpy as np


def l2_normalize(arr: np.ndarray) -> np.ndarray:
    """
    L2 normalize row vectors to unit length (||v|| = 1).

    Zero rows stay zero, so their cosine with anything is 0.
    """
    norms = np.linalg.norm(arr, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return arr / norms


def to_unit_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """(N, D) float32 matrix of unit vectors."""
    return l2_normalize(np.asarray(vectors, dtype="float32").reshape(len(vectors), -1))


def cosine_similarities(query: Sequence[float], unit_matrix: np.ndarray) -> np.ndarray:
    """Cosine of `query` against every row of an already normalized matrix."""
    q = np.asarray(query, dtype="float32").reshape(1, -1)
    q = l2_normalize(q)[0]
    return unit_matrix @ q

