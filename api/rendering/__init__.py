"""Rendering - placeholder substitution, scene rasterization and PDF output.

This package only handles the visual side of certificates. Storage and batch
bookkeeping live in the services package.
"""
