"""
Pure helpers: text normalization, similarity, concurrency and batching.
"""
