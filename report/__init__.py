"""
Report package: renders change-set results.
"""
