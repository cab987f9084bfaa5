"""
Question Importer
=================
Bulk import of multiple-choice questions from uploaded documents.

Architecture:
    - Converters: Turn .docx/.pdf/.html/.txt uploads into one markup body
    - Segmenter: Splits the body into blocks on <question> tags
    - Variant Parser: Splits each block into stem + answers on <variant> tags
    - Record Builder: Builds ordered question records and a create/update plan
    - Validator: Reports dropped, padded and review-flagged questions
    - CRUD / Server: Execute the plan against SQLite, expose an upload API

Version: 1.0.0
"""

__version__ = "1.0.0"
