"""Pattern-based field extraction over document TraceLinks."""
