"""
PDF Compressor - best-of-N page compression for large PDF documents.

Splits a document into single pages, runs every page through several
external compressors in parallel, keeps the smallest result and merges
the pages back together.
"""

__version__ = "1.0.0"
