# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Word-overlap similarity used to detect duplicate output."""


def word_set(text: str) -> set[str]:
    return set(text.lower().split())


def jaccard_similarity(text_a: str, text_b: str) -> float:
    """Intersection over union of the two texts' lowercase word sets."""
    words_a, words_b = word_set(text_a), word_set(text_b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def uniqueness_score(similarity: float, threshold: float) -> float:
    """1.0 up to the threshold, then decaying at twice the excess.

    The score reaches 0.0 once similarity exceeds the threshold by 0.5 and
    stays there, so with thresholds below 0.5 near-copies and exact copies
    score the same.
    """
    if similarity <= threshold:
        return 1.0
    return max(0.0, 1.0 - (similarity - threshold) * 2)
