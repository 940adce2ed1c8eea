"""Task classification: functional vs non-functional.

The classification is computed once when a task is prepared and decides
which review profile and which phase requirements apply afterwards.
"""

from typing import Iterable, Protocol

from gatekeeper.lib.constants import MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL

FUNCTIONAL_TERMS = [
    "validation",
    "logic",
    "algorithm",
    "calculation",
    "processing",
    "integration",
    "api",
    "database",
    "workflow",
    "business",
    "authentication",
    "authorization",
    "payment",
    "booking",
    "scheduling",
    "form",
    "submit",
    "validate",
    "calculate",
    "process",
]

NON_FUNCTIONAL_TERMS = [
    "config",
    "setup",
    "documentation",
    "deployment",
    "environment",
    "build",
    "dependencies",
    "fix",
    "update",
    "migration",
    "styling",
    "css",
    "layout",
    "responsive",
    "ui",
    "design",
    "performance",
    "optimization",
    "security",
    "monitoring",
]

APPROACHES = {
    MODE_FUNCTIONAL: "TDD: RED -> GREEN -> REFACTOR",
    MODE_NON_FUNCTIONAL: "Problem Analysis: Analyze -> Identify root cause -> Fix directly -> Validate",
}


class Classifier(Protocol):
    def classify(self, title: str, acceptance_criteria: Iterable[str]) -> str:
        ...


class KeywordClassifier:
    """Vocabulary-based classifier; ambiguity resolves to functional.

    Terms match as substrings of the lower-cased title plus criteria.
    """

    def __init__(self, functional_terms: list[str] | None = None, non_functional_terms: list[str] | None = None):
        self.functional_terms = functional_terms or FUNCTIONAL_TERMS
        self.non_functional_terms = non_functional_terms or NON_FUNCTIONAL_TERMS

    def matches(self, title: str, acceptance_criteria: Iterable[str]) -> tuple[list[str], list[str]]:
        """Matched (functional, non-functional) terms."""
        text = " ".join([title, *acceptance_criteria]).lower()
        functional = [t for t in self.functional_terms if t in text]
        non_functional = [t for t in self.non_functional_terms if t in text]
        return functional, non_functional

    def classify(self, title: str, acceptance_criteria: Iterable[str]) -> str:
        functional, non_functional = self.matches(title, list(acceptance_criteria))
        if non_functional and not functional:
            return MODE_NON_FUNCTIONAL
        return MODE_FUNCTIONAL


def approach_for(classification: str) -> str:
    return APPROACHES[classification]
