"""Mirror MDX articles and JSON settings from a GitHub repository into a content store."""

__version__ = '0.1.0'
