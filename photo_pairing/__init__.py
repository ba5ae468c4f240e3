"""
Photo Pairing Engine

Groups product photos into front/back products, with extras and leftover
singletons, from pre-extracted image features.
"""

__version__ = "1.0.0"
