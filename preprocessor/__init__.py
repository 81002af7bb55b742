"""
Catalog preprocessor: category mapping and sharded output for shop exports
"""

__version__ = "1.0.0"
