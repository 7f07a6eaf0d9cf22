"""
Constants used throughout the protannot package.

Centralizes the aligner output contract and pipeline defaults.
"""

from __future__ import annotations

# =============================================================================
# Aligner Output Contract
# =============================================================================

# Custom BLAST output format: comma-separated, six columns
BLAST_OUTFMT_CSV = "10 qacc sacc bitscore evalue pident stitle"

# Column order of BLAST_OUTFMT_CSV
BLAST_CSV_COLUMNS = (
    "qacc",
    "sacc",
    "bitscore",
    "evalue",
    "pident",
    "stitle",
)

BLAST_CSV_DELIMITER = ","

# Separator of the sub-fields in the subject token (db|accession|name)
SUBJECT_TOKEN_SEPARATOR = "|"

# =============================================================================
# Pipeline Defaults
# =============================================================================

# Proteins per aligner invocation
DEFAULT_BATCH_SIZE = 1000

# Annotations per committed transaction
DEFAULT_SUB_BATCH_SIZE = 500

DEFAULT_EVALUE = 1e-4

DEFAULT_NUM_THREADS = 8

# Marker stored with every annotation derived by this pipeline
DEFAULT_PROVENANCE_TAG = "BLAST"

# =============================================================================
# Pipeline Stage Names (used in progress events and failure records)
# =============================================================================

STAGE_PARTITIONING = "partitioning"
STAGE_ALIGNING = "aligning"
STAGE_PARSING = "parsing"
STAGE_SELECTING = "selecting"
STAGE_RESOLVING = "resolving_taxonomy"
STAGE_PERSISTING = "persisting"
