"""Pure helper functions shared across the client."""
