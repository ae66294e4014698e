"""
Automated PR review
===================

Components:
- decision: CI evaluation and review deduplication
- automation: per-PR fan-out, labels and summary
"""
