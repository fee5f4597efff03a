"""
DID handle cache: resolver, repository and the cache warmer job.
"""
