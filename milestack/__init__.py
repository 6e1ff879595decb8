"""
Milestack backend.

Learning platform where students earn AI assistance by demonstrating
understanding of their assignments.
"""

__version__ = "1.0.0"
