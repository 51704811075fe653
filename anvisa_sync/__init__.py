"""Catalog sync package: DB models, pipelines, APIs.

This package mirrors the ANVISA open-data catalog published on dados.gov.br
into a local database and serves read access to the mirrored records.
"""
