"""Core domain package for relayscope.

Core contains extraction, deduplication, album aggregation and publishing
logic without any Telegram or storage-specific code, keeping the business
logic portable.
"""
