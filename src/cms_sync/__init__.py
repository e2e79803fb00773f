"""Two-way synchronisation of a local content tree with a headless CMS."""

__version__ = "0.1.0"
