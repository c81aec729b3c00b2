"""
Data Downloader Package

Lookup feed client, retrieval strategies, slice building and the batch dispatcher.
"""
