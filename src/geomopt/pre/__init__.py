"""
Mesh preprocessing: element topology tables and per-element geometric quantities.
"""
