"""
Facts Service application package.
"""
