"""
HTTP middlewares.
"""
