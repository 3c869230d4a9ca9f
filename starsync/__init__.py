"""
Starsync - Keep curated GitHub star lists in sync with a local catalogue.

A CLI tool that:
1. Walks your GitHub star lists and starred repositories
2. Mirrors them into a local SQLite catalogue
3. Scores each repository against every list using an LLM
4. Plans and applies list membership changes without orphaning repos

Usage:
    starsync init                # Initialize in current directory
    starsync lists sync          # Pull lists and their items into the catalogue
    starsync stars unlisted      # Starred repos that are in no list
    starsync score batch         # Score top repos and plan membership
    starsync score one o/r       # Score a single repository
"""

__version__ = "0.1.0"
__author__ = "Starsync"
