"""
Normalize package: entities parsed from REST payloads.
"""
