"""
API endpoint routers for the comment pipeline.
"""
