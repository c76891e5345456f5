"""migrationflow - LLM agent workflows for migrating a codebase one step at a time."""
