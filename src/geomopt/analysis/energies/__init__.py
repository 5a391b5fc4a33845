"""
Energy terms. Every term precomputes its element weights once at construction
and normalizes them to sum to one, so that terms over different element
counts stay on comparable scales.
"""
