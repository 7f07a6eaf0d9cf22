"""
Core algorithms of the annotation pipeline.

Batch partitioning, BLAST output parsing, hit selection, common-ancestor
resolution, sub-batched persistence and the pipeline coordinator.
"""
