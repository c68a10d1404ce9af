"""
Bundled configuration resources and retry policy definitions.
"""
