from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two embedding vectors, in [-1, 1].

    Vectors of different length, or a zero-magnitude vector, give 0.0
    instead of raising.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if magnitude == 0.0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b)) / magnitude
    # Rounding can push |similarity| a hair above 1
    return float(np.clip(similarity, -1.0, 1.0))
