"""
Adventure Engine API routers
"""
