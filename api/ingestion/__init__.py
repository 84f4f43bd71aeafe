"""
Spreadsheet upload -> relational table ingestion.
"""
