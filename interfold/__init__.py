"""Interfold — an outline editor core backed by a per-user hypergraph of concepts."""

__version__ = "0.1.0"

from interfold.client import Interfold
from interfold.exceptions import (
    ConstraintViolation,
    IdentityRequiredError,
    InterfoldError,
    NotFoundError,
    OutlineIntegrityError,
    ValidationError,
)
from interfold.models import (
    AtomicSet,
    FindOrCreateResult,
    InterfoldStats,
    Intersection,
    IntersectionStats,
    IntersectionWithAtomicSets,
    NodePathEntry,
    OutlineNode,
    OutlineTreeNode,
    ValidationResult,
)

__all__ = [
    "AtomicSet",
    "ConstraintViolation",
    "FindOrCreateResult",
    "IdentityRequiredError",
    "Interfold",
    "InterfoldError",
    "InterfoldStats",
    "Intersection",
    "IntersectionStats",
    "IntersectionWithAtomicSets",
    "NodePathEntry",
    "NotFoundError",
    "OutlineIntegrityError",
    "OutlineNode",
    "OutlineTreeNode",
    "ValidationError",
    "ValidationResult",
    "__version__",
]
