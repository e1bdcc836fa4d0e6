"""
rssmix - RSS/Atom compilation pipeline.

This package fetches tracked feeds into a local cache, merges them into
user-defined compilations and hands the resulting files to a publish command.
The three stages coordinate only through watermarks stored in the database.
"""

__version__ = "0.1.0"
