"""Linux network buffer consistency checker and tuning-profile recommender."""

__version__ = "0.1.0"
