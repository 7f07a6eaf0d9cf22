"""
API clients for external services.

Provides the UniProt client used to resolve accessions missing from the
local reference table.
"""

from protannot.clients.uniprot import UniProtAPIError, UniProtTaxonLookup

__all__ = [
    "UniProtAPIError",
    "UniProtTaxonLookup",
]
