"""bdh: coordination wrapper around the bd issue tracker."""

__version__ = "0.1.0"
