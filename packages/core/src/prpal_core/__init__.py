"""Review orchestration engine: tool execution, output extraction and diff mapping."""
