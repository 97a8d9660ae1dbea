"""
Utilities Package

Helper functions used across the application:
- parsing.py: permissive parsing of listing query parameters
"""
