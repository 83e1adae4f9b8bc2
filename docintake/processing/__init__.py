"""
Document preprocessing.

Public API::

    from docintake.processing import inspect_pdf

    info = await inspect_pdf(pdf_bytes)
    info.page_count, info.text, info.readable
"""

from docintake.processing.pdf import PdfInfo, inspect_pdf

__all__ = ["PdfInfo", "inspect_pdf"]
