"""Textual front end for chatterm."""
