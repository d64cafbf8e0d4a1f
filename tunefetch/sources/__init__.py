"""
Source Layer.

Platform fetchers, playlist expanders, the source dispatcher and the shared
HTTP session and rate-limit budget they use.
"""
