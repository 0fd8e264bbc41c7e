"""Catalog Export: resumable, streaming CSV export of filtered product catalogs."""

__version__ = "0.1.0"
