"""
Recommendation engine: distributes an investable amount across portfolio
assets by allocation gap × score.

Modules
-------
allocator : Pure functions — priority, sorting, capital distribution with
            minimum-allocation pooling, allocation context, validators.
service   : RecommendationGenerator — values holdings in the base currency,
            runs the allocator and records the audit event sequence.
"""
