"""Cross builder interfaces and implementations."""

from .base import BuildSpec, CrossBuilder
from .xargo import XargoBuilder

__all__ = ["BuildSpec", "CrossBuilder", "XargoBuilder"]
