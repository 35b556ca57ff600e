"""
QuoteDesk: sales quote documents from a web form

Packages:
    api/        Quote and autocomplete routes
    forms/      Line items, quote layout, PDF and XLSX renderers
    agents/     Remote product image fetcher
    core/       Paths, errors, catalog storage and startup checks
"""
