"""Personal task agents orchestrated over a markdown task store."""
