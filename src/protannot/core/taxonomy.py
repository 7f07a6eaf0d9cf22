"""
Taxonomy forest and common-ancestor resolution.

The taxonomy is held as a flat table keyed by taxon id with parent-id
links (no object graph). It is loaded once per pipeline run and only
read afterwards, so it can be shared between threads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from protannot.core.exceptions import UnresolvedTaxonomyError
from protannot.models.blast import AlignmentHit
from protannot.models.records import TaxonomyNode

logger = logging.getLogger(__name__)

AccessionLookup = Callable[[str], int | None]
UnresolvedHandler = Callable[[UnresolvedTaxonomyError], None]


class TaxonomyTree:
    """
    Read-only taxonomy forest keyed by taxon id.

    A node whose parent_id is None, equal to its own id (the NCBI root
    convention), or not present in the table is treated as a root.

    Example:
        >>> tree = TaxonomyTree([
        ...     TaxonomyNode(taxon_id=1, parent_id=None, rank="no rank", name="root"),
        ...     TaxonomyNode(taxon_id=2, parent_id=1, rank="superkingdom", name="Bacteria"),
        ... ])
        >>> tree.lineage(2)
        [1, 2]
    """

    def __init__(self, nodes: Iterable[TaxonomyNode] = ()) -> None:
        self._nodes: dict[int, TaxonomyNode] = {node.taxon_id: node for node in nodes}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, taxon_id: object) -> bool:
        return taxon_id in self._nodes

    def get(self, taxon_id: int) -> TaxonomyNode | None:
        return self._nodes.get(taxon_id)

    def parent_of(self, taxon_id: int) -> int | None:
        """Parent taxon id, or None if taxon_id is a root or unknown."""
        node = self._nodes.get(taxon_id)
        if node is None or node.parent_id is None or node.parent_id == taxon_id:
            return None
        if node.parent_id not in self._nodes:
            logger.debug("Taxon %d has dangling parent %d", taxon_id, node.parent_id)
            return None
        return node.parent_id

    def lineage(self, taxon_id: int) -> list[int]:
        """
        Ancestor chain of a taxon, ordered root -> taxon.

        Raises:
            KeyError: If taxon_id is not in the tree.
            ValueError: If the parent links contain a cycle.
        """
        if taxon_id not in self._nodes:
            msg = f"Taxon {taxon_id} not in taxonomy"
            raise KeyError(msg)

        chain = [taxon_id]
        seen = {taxon_id}
        parent = self.parent_of(taxon_id)
        while parent is not None:
            if parent in seen:
                msg = f"Cycle in taxonomy parent links at taxon {parent}"
                raise ValueError(msg)
            chain.append(parent)
            seen.add(parent)
            parent = self.parent_of(parent)

        chain.reverse()
        return chain

    def common_ancestor(self, taxon_ids: Sequence[int]) -> int | None:
        """
        Deepest taxon shared by the lineages of all given taxa.

        The first lineage is indexed by depth; every further taxon walks
        up from its leaf until it meets that lineage, shortening the
        common prefix. This is linear in the total lineage length.

        Returns:
            Common ancestor id, or None when the taxa sit in disjoint
            trees of the forest or no taxa are given.
        """
        if not taxon_ids:
            return None

        common = self.lineage(taxon_ids[0])
        depth_of = {taxon: depth for depth, taxon in enumerate(common)}

        for taxon_id in taxon_ids[1:]:
            meet: int | None = None
            for ancestor in reversed(self.lineage(taxon_id)):
                depth = depth_of.get(ancestor)
                if depth is not None and depth < len(common):
                    meet = depth
                    break
            if meet is None:
                return None
            del common[meet + 1:]

        return common[-1]


def resolve_common_ancestor(
    hits: Sequence[AlignmentHit],
    accession_to_taxon: AccessionLookup,
    tree: TaxonomyTree,
    on_unresolved: UnresolvedHandler | None = None,
) -> int | None:
    """
    Consensus taxon of a set of selected hits.

    Hits whose subject accession has no taxon (or a taxon missing from the
    tree) are excluded and reported through on_unresolved; they never fail
    the resolution.

    Args:
        hits: Selected hits of one query.
        accession_to_taxon: Maps a subject accession to a taxon id or None.
        tree: Taxonomy forest for the run.
        on_unresolved: Called with each UnresolvedTaxonomyError; when omitted
            the exclusion is logged at debug level.

    Returns:
        The lowest common ancestor of all resolvable hits, the hit's own
        taxon when exactly one resolves, or None (undetermined) when none do.
    """
    taxa: list[int] = []
    seen_accessions: dict[str, int | None] = {}

    for hit in hits:
        accession = hit.subject_accession
        if accession not in seen_accessions:
            seen_accessions[accession] = _lookup_in_tree(
                accession, accession_to_taxon, tree, on_unresolved
            )
        taxon_id = seen_accessions[accession]
        if taxon_id is not None:
            taxa.append(taxon_id)

    if not taxa:
        return None
    return tree.common_ancestor(list(dict.fromkeys(taxa)))


def _lookup_in_tree(
    accession: str,
    accession_to_taxon: AccessionLookup,
    tree: TaxonomyTree,
    on_unresolved: UnresolvedHandler | None,
) -> int | None:
    taxon_id = accession_to_taxon(accession)
    if taxon_id is None:
        error = UnresolvedTaxonomyError(accession)
    elif taxon_id not in tree:
        error = UnresolvedTaxonomyError(accession, f"taxon {taxon_id} not in taxonomy")
    else:
        return taxon_id

    if on_unresolved is not None:
        on_unresolved(error)
    else:
        logger.debug("Excluding hit from consensus: %s", error.message)
    return None
