#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command-line interface for immunotaxa package.
"""

import argparse

import scanpy as sc

from .exceptions import ImmunotaxaError
from .evaluation import test_classifier
from .prediction import classify_cells
from .registry import ModelRegistry, get_registry, delete_classifier, save_classifier
from .taxonomy import Taxonomy
from .training import train_classifier


def _open_registry(path, include_default=False):
    registry = get_registry(path)
    if include_default and registry.name != "default":
        registry = registry.with_fallback(ModelRegistry.default())
    return registry


def _classify(args):
    adata = sc.read_h5ad(args.query)
    print(f"   Loaded {adata.n_obs} cells × {adata.n_vars} features")
    registry = _open_registry(args.registry, args.include_default)
    classify_cells(
        adata,
        cell_types=args.cell_types or "all",
        registry=registry,
        layer=args.layer,
        ignore_ambiguous=args.ignore_ambiguous,
    )
    adata.write_h5ad(args.out)
    print(f"\n✅ Classification finished → {args.out}")


def _train(args):
    adata = sc.read_h5ad(args.data)
    registry = _open_registry(args.registry, args.include_default)
    classifier = train_classifier(
        adata,
        cell_type=args.cell_type,
        marker_genes=args.markers,
        tag_column=args.tag_column,
        layer=args.layer,
        equivalent_types=args.equivalent,
        parent=args.parent,
        registry=registry if args.parent else None,
        random_state=args.seed,
        missing_genes="drop" if args.drop_missing_genes else "raise",
    )
    print(classifier.summary())
    save_classifier(classifier, args.registry, include_default=args.include_default, overwrite=args.overwrite)


def _test(args):
    adata = sc.read_h5ad(args.data)
    registry = _open_registry(args.registry, args.include_default)
    classifier = registry.load(args.cell_type)
    result = test_classifier(
        classifier,
        adata,
        tag_column=args.tag_column,
        layer=args.layer,
        equivalent_types=args.equivalent,
        registry=registry,
    )
    print(f"   Suggested threshold (Youden's J): {result.best_threshold():.3f}")
    if args.roc_out:
        result.roc_curve.to_csv(args.roc_out, index=False)
        print(f"   ROC curve written → {args.roc_out}")


def _list(args):
    names = sorted(_open_registry(args.registry, args.include_default).list())
    if not names:
        print("No classifiers found")
    for name in names:
        print(name)


def _delete(args):
    delete_classifier(args.cell_type, args.registry)


def _tree(args):
    registry = _open_registry(args.registry, args.include_default)
    print(Taxonomy(registry.load_all()).render(show_markers=args.markers))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="immunotaxa",
        description="immunotaxa: hierarchical immune cell type classification for scRNA-seq data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Classify with the bundled classifiers
  immunotaxa classify --query data.h5ad --out classified.h5ad

  # Train a B cell classifier and store it in a user registry
  immunotaxa train --data train.h5ad --cell-type "B cells" --markers CD19 MS4A1 CD79A \\
      --tag-column cell_type --registry ./my_models

  # Classify with user classifiers plus the bundled ones
  immunotaxa classify --query data.h5ad --out classified.h5ad --registry ./my_models --include-default
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def registry_args(p, required=False):
        p.add_argument("--registry", default=None if required else "default", required=required,
                       help="Registry directory, or 'default' for the bundled classifiers")
        p.add_argument("--include-default", action="store_true",
                       help="Fall back to the bundled classifiers for missing cell types")

    p = sub.add_parser("classify", help="Classify cells of an .h5ad file")
    p.add_argument("--query", required=True, help="Path to query AnnData file (.h5ad)")
    p.add_argument("--out", required=True, help="Path for output classified file (.h5ad)")
    p.add_argument("--cell-types", nargs="+", help="Only apply these classifiers (and their parents)")
    p.add_argument("--layer", help="Expression layer to use instead of .X")
    p.add_argument("--ignore-ambiguous", action="store_true",
                   help="Only report the most specific predicted type(s)")
    registry_args(p)
    p.set_defaults(func=_classify)

    p = sub.add_parser("train", help="Train a classifier and save it to a registry")
    p.add_argument("--data", required=True, help="Labelled training data (.h5ad)")
    p.add_argument("--cell-type", required=True, help="Cell type to train")
    p.add_argument("--markers", nargs="+", required=True, help="Marker genes")
    p.add_argument("--tag-column", required=True, help=".obs column with the cell annotation")
    p.add_argument("--equivalent", nargs="+", help="Annotation values also counted as the cell type")
    p.add_argument("--parent", help="Cell type of the parent classifier")
    p.add_argument("--layer", help="Expression layer to use instead of .X")
    p.add_argument("--seed", type=int, help="Random seed for class balancing")
    p.add_argument("--drop-missing-genes", action="store_true",
                   help="Drop marker genes absent from the data instead of failing")
    p.add_argument("--overwrite", action="store_true", help="Replace an existing classifier")
    registry_args(p, required=True)
    p.set_defaults(func=_train)

    p = sub.add_parser("test", help="Evaluate a stored classifier on labelled data")
    p.add_argument("--data", required=True, help="Labelled test data (.h5ad)")
    p.add_argument("--cell-type", required=True, help="Cell type of the classifier")
    p.add_argument("--tag-column", required=True, help=".obs column with the cell annotation")
    p.add_argument("--equivalent", nargs="+", help="Annotation values also counted as the cell type")
    p.add_argument("--layer", help="Expression layer to use instead of .X")
    p.add_argument("--roc-out", help="Write the ROC curve to this CSV file")
    registry_args(p)
    p.set_defaults(func=_test)

    p = sub.add_parser("list", help="List the classifiers of a registry")
    registry_args(p)
    p.set_defaults(func=_list)

    p = sub.add_parser("delete", help="Delete a classifier and its sub types from a registry")
    p.add_argument("--cell-type", required=True, help="Cell type to delete")
    p.add_argument("--registry", required=True, help="Registry directory")
    p.set_defaults(func=_delete)

    p = sub.add_parser("tree", help="Show the classifier taxonomy of a registry")
    p.add_argument("--markers", action="store_true", help="Show marker genes")
    registry_args(p)
    p.set_defaults(func=_tree)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except (ImmunotaxaError, OSError) as e:
        print(f"❌ Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    exit(main())
