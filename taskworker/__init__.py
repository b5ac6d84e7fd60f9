"""Background job processing for a task-management service."""
