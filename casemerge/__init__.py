"""casemerge — reconcile incoming test cases against an existing library.

Public API:
- records.normalizer.normalize    : raw mapping -> canonical Record
- dedup.scorer.score              : composite similarity of two records
- conflict.merge.merge            : field-level merge plus unresolved fields
- dedup.pipeline.run              : classify a batch (off / strict / smart)
- conflict.review.resolve         : apply reviewer decisions to pending conflicts
- dedup.reconcile.reconcile_pool  : collapse duplicates already in a pool
"""

__version__ = "0.1.0"
