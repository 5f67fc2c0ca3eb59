"""
casemerge records package.

Provides:
- models: canonical Record schema and the conflict/resolution/result exchange types
- normalizer: alias-aware mapping from raw input onto Record
- fingerprint: SHA-256 digest of the compared content (exact-duplicate test)
"""
