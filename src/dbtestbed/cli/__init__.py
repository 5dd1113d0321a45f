"""dbtestbed CLI (typer + rich)."""
