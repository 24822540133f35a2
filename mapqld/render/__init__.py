"""Map rendering support: coordinate conversion cache and view bounds."""
