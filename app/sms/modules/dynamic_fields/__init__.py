"""
Dynamic fields: tenant-defined extra attributes and simple form templates.
"""
