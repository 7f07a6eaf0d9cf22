"""Unit tests for the taxonomy forest and common-ancestor resolution."""

from __future__ import annotations

import pytest

from protannot.core.exceptions import UnresolvedTaxonomyError
from protannot.core.taxonomy import TaxonomyTree, resolve_common_ancestor
from protannot.models.records import TaxonomyNode
from tests.factories import REFERENCES, make_hit


def lookup(accession: str) -> int | None:
    return REFERENCES.get(accession)


class TestTaxonomyTree:
    """Tests for lineage and common ancestor computation."""

    def test_lineage_root_to_leaf(self, tree: TaxonomyTree) -> None:
        """Should order the ancestor chain from root to taxon."""
        assert tree.lineage(100) == [1, 2, 10, 100]
        assert tree.lineage(1) == [1]

    def test_lineage_unknown_taxon(self, tree: TaxonomyTree) -> None:
        """Should raise KeyError for a taxon not in the tree."""
        with pytest.raises(KeyError):
            tree.lineage(999)

    def test_self_parent_is_root(self) -> None:
        """Should treat a node that is its own parent as a root."""
        tree = TaxonomyTree([
            TaxonomyNode(taxon_id=1, parent_id=1),
            TaxonomyNode(taxon_id=5, parent_id=1),
        ])
        assert tree.lineage(5) == [1, 5]

    def test_dangling_parent_is_root(self) -> None:
        """Should stop at a node whose parent is not loaded."""
        tree = TaxonomyTree([TaxonomyNode(taxon_id=5, parent_id=42)])
        assert tree.lineage(5) == [5]

    def test_cycle_detected(self) -> None:
        """Should raise ValueError on cyclic parent links."""
        tree = TaxonomyTree([
            TaxonomyNode(taxon_id=1, parent_id=2),
            TaxonomyNode(taxon_id=2, parent_id=1),
        ])
        with pytest.raises(ValueError, match="Cycle"):
            tree.lineage(1)

    def test_common_ancestor_sibling_species(self, tree: TaxonomyTree) -> None:
        """Should return the shared phylum of two sibling species."""
        assert tree.common_ancestor([100, 101]) == 10

    def test_common_ancestor_only_root_shared(self, tree: TaxonomyTree) -> None:
        """Should return the root when only the root is shared."""
        assert tree.common_ancestor([100, 300]) == 1

    def test_common_ancestor_same_leaf(self, tree: TaxonomyTree) -> None:
        """Should return the leaf itself when all taxa are the same."""
        assert tree.common_ancestor([200, 200]) == 200

    def test_common_ancestor_with_ancestor(self, tree: TaxonomyTree) -> None:
        """Should return the ancestor when one taxon lies on the other's lineage."""
        assert tree.common_ancestor([100, 2]) == 2
        assert tree.common_ancestor([2, 100]) == 2

    def test_common_ancestor_order_independent(self, tree: TaxonomyTree) -> None:
        """Should not depend on the order of taxa."""
        assert tree.common_ancestor([100, 101, 200]) == 2
        assert tree.common_ancestor([200, 101, 100]) == 2

    def test_disjoint_trees(self) -> None:
        """Should return None for taxa in different trees of the forest."""
        tree = TaxonomyTree([
            TaxonomyNode(taxon_id=1),
            TaxonomyNode(taxon_id=2),
            TaxonomyNode(taxon_id=11, parent_id=1),
            TaxonomyNode(taxon_id=22, parent_id=2),
        ])
        assert tree.common_ancestor([11, 22]) is None

    def test_empty(self, tree: TaxonomyTree) -> None:
        """Should return None for no taxa."""
        assert tree.common_ancestor([]) is None


class TestResolveCommonAncestor:
    """Tests for consensus taxon resolution across hits."""

    def test_single_resolvable_hit(self, tree: TaxonomyTree) -> None:
        """Should return the hit's own taxon when exactly one resolves."""
        hits = [make_hit(accession="P21464")]
        assert resolve_common_ancestor(hits, lookup, tree) == 200

    def test_lowest_common_ancestor(self, tree: TaxonomyTree) -> None:
        """Should return the deepest node shared by all hit lineages."""
        hits = [make_hit(accession="P0A7V0"), make_hit(accession="P0A7V3")]
        assert resolve_common_ancestor(hits, lookup, tree) == 10

    def test_unresolvable_hits_excluded(self, tree: TaxonomyTree) -> None:
        """Should exclude and report hits without a taxon."""
        errors: list[UnresolvedTaxonomyError] = []
        hits = [make_hit(accession="UNKNOWN1"), make_hit(accession="P0A7V0")]

        taxon = resolve_common_ancestor(hits, lookup, tree, on_unresolved=errors.append)

        assert taxon == 100
        assert [e.accession for e in errors] == ["UNKNOWN1"]

    def test_taxon_missing_from_tree(self, tree: TaxonomyTree) -> None:
        """Should exclude a hit whose taxon is not in the taxonomy."""
        errors: list[UnresolvedTaxonomyError] = []
        taxon = resolve_common_ancestor(
            [make_hit(accession="X")],
            lambda accession: 424242,
            tree,
            on_unresolved=errors.append,
        )
        assert taxon is None
        assert "not in taxonomy" in errors[0].reason

    def test_nothing_resolves(self, tree: TaxonomyTree) -> None:
        """Should return None (undetermined) without raising."""
        hits = [make_hit(accession="U1"), make_hit(accession="U2")]
        assert resolve_common_ancestor(hits, lookup, tree) is None

    def test_lookup_called_once_per_accession(self, tree: TaxonomyTree) -> None:
        """Should look up repeated accessions only once."""
        calls: list[str] = []

        def counting_lookup(accession: str) -> int | None:
            calls.append(accession)
            return lookup(accession)

        hits = [make_hit(accession="P0A7V0"), make_hit(accession="P0A7V0")]
        assert resolve_common_ancestor(hits, counting_lookup, tree) == 100
        assert calls == ["P0A7V0"]

    def test_no_hits(self, tree: TaxonomyTree) -> None:
        """Should return None for an empty hit list."""
        assert resolve_common_ancestor([], lookup, tree) is None
