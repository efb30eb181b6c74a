"""
Test package marker so `tests.*` modules import the same way under any rootdir.
"""
