"""
Code Extractor - split paths out of a monorepo into a standalone repository.

Rewrites the history of a branch so that only the commits touching a set of
paths survive, each annotated with the id of the commit it was transferred
from, and writes the result into a fresh git repository.
"""

__version__ = "1.0.0"
__author__ = "Seba Battig"
