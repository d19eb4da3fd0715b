"""Cross-cutting helpers: telemetry, request/workflow context, utilities."""
