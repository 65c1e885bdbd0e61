"""
HTTP surface of the comment pipeline.
"""
