"""Merge and human review of near-duplicate test cases.

merge.merge() folds an incoming record into an existing one and reports the
fields it could not decide. review.resolve() applies reviewer decisions
(MERGE, KEEP_BOTH, SKIP) to the conflicts a pipeline run left pending; a
conflict nobody decides stays pending.
"""
