# swordfight/content/__init__.py
from .catalog import BundledCatalog, HttpCatalog, validate_character
