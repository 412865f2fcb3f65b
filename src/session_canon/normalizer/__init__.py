"""Conversation normalization engine.

Turns a source adapter's raw conversation into the canonical entity set.
Import from the submodules (ids, timestamps, raw, reconcile, builder).
"""
