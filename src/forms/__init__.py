"""Quote form processing and document rendering.

Key exports:
    build_quote()         Turn a submitted form into a render plan
    render_quote_pdf()    Paginated PDF from a plan
    render_quote_xlsx()   Workbook template filled from a plan
    generate_quote()      Plan + render under the render deadline
"""
