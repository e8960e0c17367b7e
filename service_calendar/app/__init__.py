"""
Calendar Service application package.
"""
