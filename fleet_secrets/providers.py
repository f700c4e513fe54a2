"""Keyword based detection of the cloud providers a repository deploys to"""
import re
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

DEFAULT_KEYWORDS: Dict[str, tuple] = {
    "aws": ("aws", "amazon", "eks", "lambda"),
    "azure": ("azure", "azr", "aks"),
    "gcp": ("gcp", "google", "gke", "gcloud"),
}


class CloudProviderClassifier:
    """Matches whole words of repository names and commit messages against keywords.

    Several providers may match the same text; all of them are returned.
    """

    def __init__(self, keywords: Optional[Mapping[str, Iterable[str]]] = None):
        keywords = DEFAULT_KEYWORDS if keywords is None else keywords
        self.keywords = {
            provider: frozenset(word.lower() for word in words)
            for provider, words in keywords.items()
        }

    @staticmethod
    def _tokens(text: str) -> FrozenSet[str]:
        return frozenset(t for t in re.split(r"[^a-z0-9]+", text.lower()) if t)

    def classify(self, *texts: Optional[str]) -> FrozenSet[str]:
        tokens = frozenset().union(*(self._tokens(t) for t in texts if t))
        return frozenset(
            provider for provider, words in self.keywords.items() if tokens & words
        )
