"""merchmate: conversational design-to-product agent backed by Printify."""

__version__ = "1.0.0"
