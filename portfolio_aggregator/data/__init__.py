"""
Data contracts and ingress normalization.

Defines the strict internal record types and the single adapter that maps raw
platform records (with their alternate field spellings) onto them.
"""
