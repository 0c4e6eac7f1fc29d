"""
Ingestion — parsing, chunking, embedding and storing documents.

This package is responsible for the ETL-like pipeline that converts raw
documents (PDF, DOCX, Markdown, HTML, code …) into embedded chunks in a
vector store, tracking each document through
``pending → processing → completed | failed``.
"""
