"""Duplicate detection for casemerge.

  scorer:    composite title/steps/category/tags similarity in [0, 1].
  pipeline:  batch classification in OFF / STRICT / SMART mode.
  reconcile: MinHash LSH + score confirmation over an existing pool.
"""
