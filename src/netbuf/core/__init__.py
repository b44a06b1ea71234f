"""Readers, evaluator, and recommender."""
