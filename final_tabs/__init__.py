"""Final Tabs: NBA results rendered as receipts and posted once per winner."""

__version__ = "1.0.0"
