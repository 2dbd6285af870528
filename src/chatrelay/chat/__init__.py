"""Chat orchestration, context building, and streaming."""
