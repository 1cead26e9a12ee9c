"""Business logic services.

Modules are imported directly (``app.services.cluster_service``...); the
repository layer depends on ``app.services.errors``, so nothing is imported
eagerly here.
"""
