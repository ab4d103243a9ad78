"""Report filtering and Markdown rendering."""
