"""External service integrations.

Modules:
    image_fetcher      Concurrent product photo download over HTTP
"""
