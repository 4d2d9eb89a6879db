"""
Storage package: request retry helpers.
"""
