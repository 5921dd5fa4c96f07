"""
Incremental vehicle-theft statistics rollup.
"""

__version__ = '0.1.0'
