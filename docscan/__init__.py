"""Document scanning backend.

Users upload scanned images and PDFs, a managed OCR API extracts their
text with provider fallback, a language model cleans up and classifies
the result, and chunk embeddings stored alongside the documents power
semantic search and document-grounded conversations.
"""
