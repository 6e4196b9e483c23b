"""Loading of the locally declared event source and schedule bindings."""
