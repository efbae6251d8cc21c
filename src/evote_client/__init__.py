"""Client core for the school election system."""

__version__ = "0.1.0"
