# -*- coding: utf-8 -*-
"""
Directory based storage of trained classifiers.

A registry is a directory holding one ``<cell type>.joblib`` file per
classifier (the cell type is URL-quoted to make it a safe file name). The
package ships a read-only default registry; user registries can fall back
to it for name lookups.
"""

from __future__ import annotations
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union
from urllib.parse import quote, unquote

import joblib

from .classifier import CellTypeClassifier
from .constants import (
    DEFAULT_REGISTRY_ENV,
    DEFAULT_REGISTRY_NAME,
    REGISTRY_FORMAT_VERSION,
    REGISTRY_SUFFIX,
)
from .exceptions import ConflictError, DataError, NotFoundError


def get_default_registry_path() -> Path:
    """
    Get the path of the bundled default registry.

    The ``IMMUNOTAXA_DEFAULT_REGISTRY`` environment variable takes
    precedence over the packaged data.

    Returns
    -------
    Path
        Path to the default registry directory (it may not exist)
    """
    override = os.environ.get(DEFAULT_REGISTRY_ENV)
    if override:
        return Path(override)

    strategies = [
        _get_registry_path_importlib_resources,
        _get_registry_path_relative,
    ]
    for strategy in strategies:
        path = strategy()
        if path is not None and path.exists():
            return path
    return _get_registry_path_relative()


def _get_registry_path_importlib_resources() -> Optional[Path]:
    """Try importlib.resources approach."""
    try:
        import importlib.resources as resources
        return Path(str(resources.files("immunotaxa") / "default_models"))
    except (ImportError, AttributeError, ModuleNotFoundError):
        return None


def _get_registry_path_relative() -> Path:
    """Relative to this file (development mode)."""
    return Path(__file__).resolve().parent / "default_models"


def _to_payload(classifier: CellTypeClassifier) -> dict:
    return {
        "format_version": REGISTRY_FORMAT_VERSION,
        "cell_type": classifier.cell_type,
        "model": classifier.model,
        "marker_genes": classifier.marker_genes,
        "threshold": classifier.threshold,
        "parent": classifier.parent,
    }


def _from_payload(payload: dict, source: Path) -> CellTypeClassifier:
    if not isinstance(payload, dict) or payload.get("format_version") != REGISTRY_FORMAT_VERSION:
        raise DataError(f"Unsupported classifier file format: {source}")
    return CellTypeClassifier(
        cell_type=payload["cell_type"],
        model=payload["model"],
        marker_genes=payload["marker_genes"],
        threshold=payload["threshold"],
        parent=payload["parent"],
    )


class ModelRegistry:
    """
    Collection of classifiers stored in a directory.

    Parameters
    ----------
    path : Union[str, Path]
        Registry directory; created on the first save
    read_only : bool, default False
        Refuse ``save`` and ``delete``
    fallback : ModelRegistry, optional
        Registry consulted for cell types not found in this one
    name : Optional[str]
        Display name, defaults to the directory path
    """

    def __init__(
        self,
        path: Union[str, Path],
        read_only: bool = False,
        fallback: Optional["ModelRegistry"] = None,
        name: Optional[str] = None,
    ):
        self.path = Path(path)
        self.read_only = read_only
        self.fallback = fallback
        self.name = name or str(self.path)

    @classmethod
    def default(cls) -> "ModelRegistry":
        """The read-only registry bundled with the package."""
        return cls(get_default_registry_path(), read_only=True, name=DEFAULT_REGISTRY_NAME)

    def with_fallback(self, fallback: "ModelRegistry") -> "ModelRegistry":
        """Copy of this registry that looks up missing cell types in ``fallback``."""
        return ModelRegistry(self.path, read_only=self.read_only, fallback=fallback, name=self.name)

    def __repr__(self) -> str:
        return f"ModelRegistry({self.name!r})"

    def _entry(self, cell_type: str) -> Path:
        return self.path / f"{quote(cell_type, safe='')}{REGISTRY_SUFFIX}"

    def _own(self) -> Set[str]:
        if not self.path.is_dir():
            return set()
        return {unquote(f.name[: -len(REGISTRY_SUFFIX)]) for f in self.path.glob(f"*{REGISTRY_SUFFIX}")}

    def list(self) -> Set[str]:
        """Names of all cell types available, fallback included."""
        names = self._own()
        if self.fallback is not None:
            names |= self.fallback.list()
        return names

    def __contains__(self, cell_type: str) -> bool:
        return self._entry(cell_type).is_file() or (
            self.fallback is not None and cell_type in self.fallback
        )

    def load(self, cell_type: str) -> CellTypeClassifier:
        """
        Load the classifier for ``cell_type``.

        Raises
        ------
        NotFoundError
            If neither this registry nor its fallback holds ``cell_type``
        """
        entry = self._entry(cell_type)
        if entry.is_file():
            return _from_payload(joblib.load(entry), entry)
        if self.fallback is not None and cell_type in self.fallback:
            return self.fallback.load(cell_type)
        raise NotFoundError(f"No classifier for '{cell_type}' in registry {self.name}")

    def load_all(
        self,
        cell_types: Union[str, Iterable[str]] = "all",
        include_ancestors: bool = False,
    ) -> Dict[str, CellTypeClassifier]:
        """
        Load several classifiers.

        Parameters
        ----------
        cell_types : "all" or Iterable[str], default "all"
            Cell types to load
        include_ancestors : bool, default False
            Also load the parents of the requested cell types, recursively.
            Parents missing from the registry are left out; prediction
            reports the affected branch.

        Returns
        -------
        Dict[str, CellTypeClassifier]
            Classifiers keyed by cell type
        """
        if isinstance(cell_types, str) and cell_types == "all":
            wanted = sorted(self.list())
        else:
            wanted = [cell_types] if isinstance(cell_types, str) else list(cell_types)

        loaded: Dict[str, CellTypeClassifier] = {}
        queue = list(wanted)
        while queue:
            name = queue.pop(0)
            if name in loaded:
                continue
            loaded[name] = self.load(name)
            parent = loaded[name].parent
            if include_ancestors and parent is not None and parent not in loaded and parent in self:
                queue.append(parent)
        return loaded

    def children(self, cell_type: str) -> List[str]:
        """Cell types stored in this registry whose parent is ``cell_type``."""
        return sorted(n for n in self._own() if self.load(n).parent == cell_type)

    def _check_writable(self) -> None:
        if self.read_only:
            raise PermissionError(f"Registry {self.name} is read-only")

    def save(
        self,
        classifier: CellTypeClassifier,
        overwrite: bool = False,
        include_default: bool = False,
    ) -> Path:
        """
        Store ``classifier`` in this registry.

        Parameters
        ----------
        classifier : CellTypeClassifier
            Classifier to save
        overwrite : bool, default False
            Replace an existing classifier for the same cell type
        include_default : bool, default False
            Also accept a parent found in the bundled default registry, and
            treat its cell types as taken

        Returns
        -------
        Path
            Path of the written file

        Raises
        ------
        ConflictError
            If the cell type exists and ``overwrite`` is False
        DataError
            If the parent cell type cannot be found
        """
        self._check_writable()
        known = self.list()
        if include_default:
            known |= ModelRegistry.default().list()

        if classifier.cell_type in known and not overwrite:
            raise ConflictError(
                f"A classifier for '{classifier.cell_type}' already exists in {self.name}; "
                "use overwrite=True to replace it"
            )
        if classifier.parent is not None and classifier.parent not in known:
            raise DataError(
                f"Parent classifier '{classifier.parent}' of '{classifier.cell_type}' "
                f"is not available in {self.name}; save the parent first"
            )

        self.path.mkdir(parents=True, exist_ok=True)
        target = self._entry(classifier.cell_type)
        fd, tmp = tempfile.mkstemp(dir=self.path, prefix=".", suffix=".tmp")
        os.close(fd)
        try:
            joblib.dump(_to_payload(classifier), tmp)
            os.replace(tmp, target)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
        return target

    def delete(self, cell_type: str) -> List[str]:
        """
        Remove ``cell_type`` and all of its sub types from this registry.

        Returns
        -------
        List[str]
            Deleted cell types, parents first

        Raises
        ------
        NotFoundError
            If ``cell_type`` is not stored in this registry
        """
        self._check_writable()
        if not self._entry(cell_type).is_file():
            raise NotFoundError(f"No classifier for '{cell_type}' in registry {self.name}")

        removed = []
        queue = [cell_type]
        while queue:
            name = queue.pop(0)
            queue.extend(self.children(name))
            self._entry(name).unlink()
            removed.append(name)
        return removed


RegistryLike = Union[str, Path, ModelRegistry]


def get_registry(registry: RegistryLike = DEFAULT_REGISTRY_NAME) -> ModelRegistry:
    """Turn a path, ``"default"`` or a registry into a :class:`ModelRegistry`."""
    if isinstance(registry, ModelRegistry):
        return registry
    if str(registry) == DEFAULT_REGISTRY_NAME:
        return ModelRegistry.default()
    return ModelRegistry(registry)


def list_classifiers(registry: RegistryLike = DEFAULT_REGISTRY_NAME) -> Set[str]:
    """Cell types available in ``registry`` (a path or ``"default"``)."""
    return get_registry(registry).list()


def load_classifier(cell_type: str, registry: RegistryLike = DEFAULT_REGISTRY_NAME) -> CellTypeClassifier:
    """Load one classifier from ``registry``."""
    return get_registry(registry).load(cell_type)


def save_classifier(
    classifier: CellTypeClassifier,
    registry: RegistryLike,
    include_default: bool = False,
    overwrite: bool = False,
    verbose: bool = True,
) -> Path:
    """
    Save ``classifier`` into the registry at ``registry``.

    See :meth:`ModelRegistry.save`.
    """
    path = get_registry(registry).save(classifier, overwrite=overwrite, include_default=include_default)
    if verbose:
        print(f"[save_classifier] Saved '{classifier.cell_type}' to {path}")
    return path


def delete_classifier(
    cell_type: str,
    registry: RegistryLike,
    verbose: bool = True,
) -> List[str]:
    """Delete ``cell_type`` and its sub types from the registry at ``registry``."""
    removed = get_registry(registry).delete(cell_type)
    if verbose:
        print(f"[delete_classifier] Deleted: {', '.join(removed)}")
    return removed
