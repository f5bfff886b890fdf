"""Organization roster administration: HR master-data import with preview and undo."""
