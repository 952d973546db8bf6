"""
Document integrity: content fingerprints and sealed signature payloads.
"""
