"""Plant Shop Backend: интернет-магазин комнатных растений."""

__version__ = "1.0.0"
