"""Core domain package for midnight.

Core contains the feeds, diffing, dispatch and subscription logic without any
osu!, Telegram or storage-specific code, keeping the business logic portable.
"""
