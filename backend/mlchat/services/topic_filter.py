from __future__ import annotations

import re
from typing import Iterable

DEFAULT_TOPIC_KEYWORDS: tuple[str, ...] = (
    "python",
    "machine learning",
    "ml",
    "pandas",
    "numpy",
    "sklearn",
    "scikit-learn",
    "tensorflow",
    "pytorch",
    "keras",
    "data science",
    "neural network",
    "deep learning",
    "nlp",
    "natural language processing",
    "computer vision",
    "regression",
    "classification",
    "clustering",
    "algorithm",
)

OUT_OF_SCOPE_MESSAGE = (
    "This bot only answers Python & Machine Learning questions. Please ask about Python "
    "programming, ML algorithms, data science, or related topics."
)


class TopicFilter:
    """
    Keyword gate applied before any paid generation call.

    Matching is a case-insensitive substring search, so "html" matches "ml" and a
    question phrased without any keyword is rejected. Both are known limitations.
    """

    def __init__(self, keywords: Iterable[str] = DEFAULT_TOPIC_KEYWORDS) -> None:
        terms = [k.strip() for k in keywords if k and k.strip()]
        if not terms:
            raise ValueError("At least one topic keyword is required")
        self.keywords = tuple(terms)
        self._pattern = re.compile("|".join(re.escape(term) for term in self.keywords), re.IGNORECASE)

    def is_in_scope(self, text: str | None) -> bool:
        if not text:
            return False
        return self._pattern.search(text) is not None


_default_filter = TopicFilter()


def is_in_scope(text: str | None) -> bool:
    return _default_filter.is_in_scope(text)
