"""Service layer for the Knowling notebook."""
