"""chatterm command-line interface."""
