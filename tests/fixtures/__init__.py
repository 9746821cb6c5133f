"""Test fixture package for coldbucket.

Contains fixtures for:
- In-memory content store and archive service fakes
- Temporary SQLite catalogs
"""
