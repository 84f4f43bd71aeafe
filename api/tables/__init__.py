"""
Read access to the tables created by ingestion.
"""
