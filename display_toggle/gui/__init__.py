"""Graphical presentation for display-toggle."""
