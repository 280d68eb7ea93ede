"""Token estimation utilities."""

from .counter import TiktokenCounter, get_default_counter
from .estimator import (
    IMAGE_TOKEN_FORMULAS,
    TokenEstimator,
    estimate_image,
    estimate_text,
    register_image_formula,
)

__all__ = [
    "IMAGE_TOKEN_FORMULAS",
    "TiktokenCounter",
    "TokenEstimator",
    "estimate_image",
    "estimate_text",
    "get_default_counter",
    "register_image_formula",
]
