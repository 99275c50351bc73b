"""Arena: contest lifecycle, ranking and fair-play detection engine."""

__version__ = "0.1.0"
