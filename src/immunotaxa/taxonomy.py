# -*- coding: utf-8 -*-
"""
Classifier taxonomy built from parent references.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Mapping, Tuple, Union

from .classifier import CellTypeClassifier
from .exceptions import ValidationError


class Taxonomy:
    """
    Forest of classifiers linked by their ``parent`` field.

    Classifiers whose parent is not part of the set, or that sit on a
    parent cycle, cannot be reached from any root. They are listed in
    :attr:`unresolved` together with the reason and are left out of
    :meth:`walk`.

    Parameters
    ----------
    classifiers : Iterable[CellTypeClassifier] or Mapping[str, CellTypeClassifier]
        Classifiers to organise; cell types must be unique
    """

    def __init__(
        self,
        classifiers: Union[Iterable[CellTypeClassifier], Mapping[str, CellTypeClassifier]],
    ):
        if isinstance(classifiers, Mapping):
            classifiers = classifiers.values()

        self.classifiers: Dict[str, CellTypeClassifier] = {}
        for clf in classifiers:
            if clf.cell_type in self.classifiers:
                raise ValidationError(f"Duplicate classifier for cell type '{clf.cell_type}'")
            self.classifiers[clf.cell_type] = clf

        self.children: Dict[str, List[str]] = defaultdict(list)
        self.roots: List[str] = []
        for name, clf in self.classifiers.items():
            if clf.parent is None:
                self.roots.append(name)
            else:
                self.children[clf.parent].append(name)

        self.depths: Dict[str, int] = {}
        stack = [(r, 0) for r in reversed(self.roots)]
        while stack:
            name, depth = stack.pop()
            self.depths[name] = depth
            for child in reversed(self.children.get(name, [])):
                stack.append((child, depth + 1))

        self.unresolved: Dict[str, str] = {}
        for name, clf in self.classifiers.items():
            if name in self.depths:
                continue
            if clf.parent not in self.classifiers:
                self.unresolved[name] = f"parent '{clf.parent}' is not loaded"
            elif self._on_cycle(name):
                self.unresolved[name] = "parent references form a cycle"
            else:
                self.unresolved[name] = "an ancestor cannot be resolved"

    def _on_cycle(self, name: str) -> bool:
        seen = set()
        current = name
        while current is not None and current in self.classifiers:
            if current in seen:
                return True
            seen.add(current)
            current = self.classifiers[current].parent
        return False

    def __len__(self) -> int:
        return len(self.depths)

    def __contains__(self, cell_type: str) -> bool:
        return cell_type in self.depths

    def depth(self, cell_type: str) -> int:
        return self.depths[cell_type]

    def ancestors(self, cell_type: str) -> List[str]:
        """Ancestors of ``cell_type``, nearest first."""
        out = []
        parent = self.classifiers[cell_type].parent
        while parent is not None and parent not in out and parent in self.classifiers:
            out.append(parent)
            parent = self.classifiers[parent].parent
        return out

    def walk(self) -> Iterator[Tuple[CellTypeClassifier, int]]:
        """Yield ``(classifier, depth)`` depth-first, every parent before its children."""
        stack = [r for r in reversed(self.roots)]
        while stack:
            name = stack.pop()
            yield self.classifiers[name], self.depths[name]
            stack.extend(reversed(self.children.get(name, [])))

    def render(self, show_markers: bool = False) -> str:
        """
        Text rendering of the taxonomy.

        Example
        -------
        Cell Type Taxonomy
        ├── B cells
        │   └── Plasma cells
        └── T cells
        """
        lines = ["Cell Type Taxonomy"]

        def label(name: str) -> str:
            clf = self.classifiers[name]
            if show_markers:
                return f"{name} [{', '.join(clf.marker_genes)}]"
            return name

        def render_subtree(names: List[str], prefix: str) -> None:
            for i, name in enumerate(names):
                last = i == len(names) - 1
                lines.append(f"{prefix}{'└── ' if last else '├── '}{label(name)}")
                render_subtree(self.children.get(name, []), prefix + ("    " if last else "│   "))

        render_subtree(self.roots, "")
        for name, reason in self.unresolved.items():
            lines.append(f"(unresolved) {name}: {reason}")
        return "\n".join(lines)
