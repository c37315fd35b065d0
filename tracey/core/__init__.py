"""
Core business logic for Tracey.

Submodules:
- exceptions: Error hierarchy shared by every layer
- matching: Embedding similarity and the lost/found matching engine
"""
