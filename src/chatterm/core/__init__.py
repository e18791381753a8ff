"""Framework-independent dashboard engine: modes, input, session, drafts, rendering."""
