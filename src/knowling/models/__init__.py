"""Data models for the Knowling notebook."""
