"""Task documents: data model, validation and on-disk I/O."""
