"""
Services package.
Contains business logic and external service integrations.
"""
