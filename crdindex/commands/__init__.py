"""Click commands for crdindex."""
