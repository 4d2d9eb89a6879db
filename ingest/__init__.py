"""
Ingest package: Azure DevOps REST client and wrappers.
"""
