"""Bucket and object operations mixed into ``S3Client``."""
