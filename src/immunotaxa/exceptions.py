# -*- coding: utf-8 -*-
"""
Exception types raised by immunotaxa.
"""

from __future__ import annotations


class ImmunotaxaError(Exception):
    """Base class for all immunotaxa errors."""


class ValidationError(ImmunotaxaError, ValueError):
    """A classifier field was given a malformed value."""


class DataError(ImmunotaxaError, ValueError):
    """The input data cannot support the requested operation.

    Raised for unrepresented classes, missing marker genes, an undefined
    AUC or a parent classifier that cannot be resolved.
    """


class NotFoundError(ImmunotaxaError, KeyError):
    """A cell type is not present in a registry."""

    def __str__(self) -> str:
        # KeyError quotes its argument, keep the message readable
        return str(self.args[0]) if self.args else ""


class ConflictError(ImmunotaxaError, FileExistsError):
    """A classifier with the same cell type already exists in a registry."""
